from enum import Enum


class StorageProvider(Enum):
    google_drive = "google-drive"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    StorageProvider.google_drive: "Google Drive",
}
