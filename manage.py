#!/usr/bin/env python
"""Django's command-line utility for administrative tasks."""
import os
import sys


def main():
    # DJANGO_ENV=production|test selects the settings module; local is the default
    env = os.environ.get('DJANGO_ENV', 'local').lower()
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', f'config.settings.{env}')

    try:
        from django.core.management import execute_from_command_line
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Make sure it's installed and "
            "available on your PYTHONPATH. Activate your virtualenv if needed."
        ) from exc

    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
