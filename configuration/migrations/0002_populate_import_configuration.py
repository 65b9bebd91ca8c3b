from django.db import migrations


def populate_configuration(apps, schema_editor):
    Configuration = apps.get_model("configuration", "Configuration")

    initial_data = [
        {
            "key": "import_max_error_attempts",
            "data_type": "number",
            "value": "2",
            "description": "Number of times an item may fail before the importer skips it for good. Only used when the IMPORT_SKIP_ON_ERROR flag is enabled.",
        },
        {
            "key": "import_max_consecutive_skips",
            "data_type": "number",
            "value": "5",
            "description": "The import is aborted once this many items in a row have been skipped.",
        },
        {
            "key": "import_attachment_size_limit",
            "data_type": "number",
            "value": "0",
            "description": "Maximum size of a fetched attachment in bytes. 0 means unlimited.",
        },
        {
            "key": "import_attachment_fetch_retries",
            "data_type": "number",
            "value": "3",
            "description": "Number of attempts made to fetch each attachment.",
        },
        {
            "key": "import_attachment_fetch_timeout",
            "data_type": "number",
            "value": "300",
            "description": "Timeout in seconds for a single attachment fetch.",
        },
        {
            "key": "import_job_max_retries",
            "data_type": "number",
            "value": "0",
            "description": "Number of times an import which failed on an attachment is resumed automatically.",
        },
        {
            "key": "import_job_retry_delay",
            "data_type": "number",
            "value": "5",
            "description": "Minutes to wait before automatically resuming a failed import.",
        },
    ]

    for entry in initial_data:
        Configuration.objects.update_or_create(key=entry["key"], defaults=entry)


def revert_populate_configuration(apps, schema_editor):
    # There's no previous state to restore, but the migration has to be
    # reversible
    pass


class Migration(migrations.Migration):

    dependencies = [
        ("configuration", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(populate_configuration, revert_populate_configuration),
    ]
