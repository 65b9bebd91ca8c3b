from django.contrib import admin
from django.utils.html import format_html

from configuration.models import Configuration


@admin.register(Configuration)
class ConfigurationAdmin(admin.ModelAdmin):
    list_display = ("key", "value", "data_type", "description")
    search_fields = ("key", "description")
    readonly_fields = ("validated_value",)

    def validated_value(self, obj):
        try:
            value = obj.get_value()
        except ValueError as exc:
            value = f"Invalid value: {exc}"
        return format_html(
            "<div>{}</div><div style='color: #777; font-size: 0.9em;'>{}</div>",
            value,
            "This is the interpreted value based on the selected data type. "
            "This value is what will be seen by the importer.",
        )
