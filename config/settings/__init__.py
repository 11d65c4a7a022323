"""
Settings modules: local (default), production, test.
Point DJANGO_SETTINGS_MODULE at config.settings.<env>; manage.py picks the
module from DJANGO_ENV.
"""
