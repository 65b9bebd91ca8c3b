#!/usr/bin/env python
from setuptools import find_packages, setup

# siteport/__init__.py loads the Celery app, so the version is read without
# importing the package
version_namespace = {}
with open("siteport/version.py", "r") as f:
    exec(f.read(), version_namespace)  # nosec

VERSION = version_namespace["get_version"]()
INSTALL_REQUIREMENTS = [
    "Django>=4.2",
    "celery[redis]>=5.3",
    "django-redis",
    "django-flags",
    "psycopg[binary]",
    "Pillow",
    "requests",
    "sentry-sdk",
    "structlog",
    "urllib3",
]
TEST_REQUIREMENTS = ["pytest", "pytest-django"]
SCRIPTS = ["manage.py"]
DESCRIPTION = "Resumable bulk import of content archives"
CLASSIFIERS = """\
Environment :: Web Environment
Framework :: Django
Programming Language :: Python
Programming Language :: Python :: 3
""".splitlines()

with open("README.md", "r") as f:
    LONG_DESCRIPTION = f.read()


setup(
    name="siteport",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["*.tests", "*.tests.*"]),
    include_package_data=True,
    scripts=SCRIPTS,
    install_requires=INSTALL_REQUIREMENTS,
    extras_require={"test": TEST_REQUIREMENTS},
    python_requires=">=3.10",
    classifiers=CLASSIFIERS,
)
