from arkiv.db.models.uploaded_file import UploadedFile

__all__ = ["UploadedFile"]
