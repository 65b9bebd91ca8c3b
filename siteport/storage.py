from django.core.files.storage import storages
from django.utils.functional import LazyObject


class LazyAssetStorage(LazyObject):
    def _setup(self):
        self._wrapped = storages["assets"]


# Imported attachments are written to the "assets" storage alias. This is a
# LazyObject so the backend isn't resolved when the code is loaded, which is
# needed to override the setting during tests
ASSET_STORAGE = LazyAssetStorage()
