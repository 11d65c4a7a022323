from .base import *  # noqa
import os

import dj_database_url

DEBUG = True
ALLOWED_HOSTS = ["*"]

# Local DB: default sqlite unless DATABASE_URL is provided.
DATABASE_URL = os.environ.get("DATABASE_URL", None)
if DATABASE_URL:
    DATABASES["default"] = dj_database_url.parse(DATABASE_URL, conn_max_age=60)
