import os

from .settings_template import *  # NOQA ignore=F405
from .settings_template import DATABASES

DEBUG = os.getenv("DEBUG", "").lower() == "true"

DATABASES["default"].update({"PASSWORD": os.getenv("POSTGRESQL_PW", "")})
