import django.core.serializers.json
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Term",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("taxonomy", models.CharField(db_index=True, max_length=32)),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(allow_unicode=True, max_length=200)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="children",
                        to="siteport.term",
                    ),
                ),
            ],
        ),
        migrations.AddConstraint(
            model_name="term",
            constraint=models.UniqueConstraint(
                fields=("taxonomy", "slug"), name="unique_term_slug_per_taxonomy"
            ),
        ),
        migrations.CreateModel(
            name="Entity",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("post", "Post"),
                            ("page", "Page"),
                            ("attachment", "Attachment"),
                            ("nav_menu_item", "Navigation menu item"),
                        ],
                        db_index=True,
                        max_length=20,
                    ),
                ),
                ("title", models.CharField(blank=True, default="", max_length=500)),
                (
                    "slug",
                    models.SlugField(allow_unicode=True, blank=True, max_length=200),
                ),
                ("content", models.TextField(blank=True, default="")),
                ("excerpt", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("publish", "Published"),
                            ("draft", "Draft"),
                            ("pending", "Pending review"),
                            ("private", "Private"),
                            ("inherit", "Inherit"),
                        ],
                        default="draft",
                        max_length=20,
                    ),
                ),
                ("menu_order", models.IntegerField(default=0)),
                (
                    "guid",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Source URL of the entity",
                        max_length=2000,
                    ),
                ),
                ("sticky", models.BooleanField(default=False)),
                ("is_front_page", models.BooleanField(default=False)),
                (
                    "storage_file",
                    models.FileField(blank=True, max_length=255, upload_to="imports/"),
                ),
                ("mime_type", models.CharField(blank=True, default="", max_length=100)),
                (
                    "import_session",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Session id of the import which created this entity",
                        max_length=100,
                    ),
                ),
                ("published", models.DateTimeField(blank=True, null=True)),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                (
                    "menu",
                    models.ForeignKey(
                        blank=True,
                        help_text="Navigation menu this item belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="menu_items",
                        to="siteport.term",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="children",
                        to="siteport.entity",
                    ),
                ),
                (
                    "terms",
                    models.ManyToManyField(
                        blank=True, related_name="entities", to="siteport.term"
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "entities",
            },
        ),
        migrations.CreateModel(
            name="EntityMeta",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("key", models.CharField(db_index=True, max_length=255)),
                (
                    "value",
                    models.JSONField(
                        blank=True,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        null=True,
                    ),
                ),
                (
                    "entity",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="meta",
                        to="siteport.entity",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "entity meta",
            },
        ),
        migrations.CreateModel(
            name="Comment",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("author", models.CharField(blank=True, default="", max_length=255)),
                ("author_email", models.EmailField(blank=True, default="", max_length=254)),
                ("author_url", models.URLField(blank=True, default="", max_length=500)),
                ("content", models.TextField(blank=True, default="")),
                ("approved", models.BooleanField(default=False)),
                (
                    "comment_type",
                    models.CharField(blank=True, default="comment", max_length=20),
                ),
                ("submitted", models.DateTimeField(blank=True, null=True)),
                ("created", models.DateTimeField(auto_now_add=True)),
                (
                    "entity",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="comments",
                        to="siteport.entity",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="replies",
                        to="siteport.comment",
                    ),
                ),
            ],
        ),
    ]
