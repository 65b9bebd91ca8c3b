from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from siteport.storage import ASSET_STORAGE


class Term(models.Model):
    """
    A taxonomy term: a category, tag or navigation menu
    """

    taxonomy = models.CharField(max_length=32, db_index=True)
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, allow_unicode=True)
    description = models.TextField(blank=True, default="")
    parent = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="children"
    )
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["taxonomy", "slug"], name="unique_term_slug_per_taxonomy"
            )
        ]

    def __str__(self):
        return f"{self.taxonomy}:{self.slug}"


class Entity(models.Model):
    """
    A piece of content: a post, a page, an uploaded attachment or a
    navigation menu item
    """

    class Kind(models.TextChoices):
        POST = "post", "Post"
        PAGE = "page", "Page"
        ATTACHMENT = "attachment", "Attachment"
        NAV_MENU_ITEM = "nav_menu_item", "Navigation menu item"

    class Status(models.TextChoices):
        PUBLISH = "publish", "Published"
        DRAFT = "draft", "Draft"
        PENDING = "pending", "Pending review"
        PRIVATE = "private", "Private"
        INHERIT = "inherit", "Inherit"

    kind = models.CharField(max_length=20, choices=Kind.choices, db_index=True)
    title = models.CharField(max_length=500, blank=True, default="")
    slug = models.SlugField(max_length=200, allow_unicode=True, blank=True)
    content = models.TextField(blank=True, default="")
    excerpt = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )

    parent = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="children"
    )
    menu = models.ForeignKey(
        Term,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="menu_items",
        help_text="Navigation menu this item belongs to",
    )
    menu_order = models.IntegerField(default=0)

    guid = models.CharField(
        max_length=2000, blank=True, default="", help_text="Source URL of the entity"
    )
    sticky = models.BooleanField(default=False)
    is_front_page = models.BooleanField(default=False)

    storage_file = models.FileField(
        storage=ASSET_STORAGE, upload_to="imports/", blank=True, max_length=255
    )
    mime_type = models.CharField(max_length=100, blank=True, default="")

    terms = models.ManyToManyField(Term, blank=True, related_name="entities")

    import_session = models.CharField(
        max_length=100,
        blank=True,
        default="",
        db_index=True,
        help_text="Session id of the import which created this entity",
    )

    published = models.DateTimeField(null=True, blank=True)
    created = models.DateTimeField(auto_now_add=True)
    modified = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "entities"

    def __str__(self):
        return f"{self.kind}:{self.slug or self.pk}"

    @property
    def url(self):
        if self.storage_file:
            return self.storage_file.url
        return ""

    def get_meta(self, key, default=None):
        meta = self.meta.filter(key=key).first()
        if meta is None:
            return default
        return meta.value


class EntityMeta(models.Model):
    entity = models.ForeignKey(Entity, on_delete=models.CASCADE, related_name="meta")
    key = models.CharField(max_length=255, db_index=True)
    value = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        verbose_name_plural = "entity meta"

    def __str__(self):
        return f"{self.entity_id}:{self.key}"


class Comment(models.Model):
    entity = models.ForeignKey(
        Entity, on_delete=models.CASCADE, related_name="comments"
    )
    parent = models.ForeignKey(
        "self", null=True, blank=True, on_delete=models.SET_NULL, related_name="replies"
    )
    author = models.CharField(max_length=255, blank=True, default="")
    author_email = models.EmailField(blank=True, default="")
    author_url = models.URLField(max_length=500, blank=True, default="")
    content = models.TextField(blank=True, default="")
    approved = models.BooleanField(default=False)
    comment_type = models.CharField(max_length=20, blank=True, default="comment")
    submitted = models.DateTimeField(null=True, blank=True)
    created = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Comment {self.pk} on {self.entity_id}"
