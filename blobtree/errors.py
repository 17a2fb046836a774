"""
Error classification for blobtree operations.

Every failure that reaches a caller is one of the classes below. The API layer
maps them to a status code and a {"error": ..., "detail": ...} body.
"""


class BlobTreeError(Exception):
    status_code = 500
    classification = "InternalError"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.classification, "detail": self.detail}


class ValidationError(BlobTreeError):
    """A required field is missing or malformed"""

    status_code = 400
    classification = "ValidationError"


class IncompleteUpload(ValidationError):
    """A commit referenced chunks that were never staged"""

    def __init__(self, key: str, missing: list[int]):
        shown = ", ".join(str(i) for i in missing[:20])
        if len(missing) > 20:
            shown += ", ..."
        super().__init__(f"Cannot commit {key}: {len(missing)} chunk(s) were not uploaded ({shown})")
        self.missing = missing


class PermissionDenied(BlobTreeError):
    status_code = 403
    classification = "PermissionDenied"


class NotFound(BlobTreeError):
    status_code = 404
    classification = "NotFound"


class Conflict(BlobTreeError):
    status_code = 409
    classification = "Conflict"


class UpstreamFailure(BlobTreeError):
    """
    The object store failed for reasons outside the caller's control.
    step names the part of a multi-step operation that failed, so the caller can decide whether a retry is safe.
    """

    status_code = 502
    classification = "UpstreamFailure"

    def __init__(self, detail: str, step: str | None = None):
        super().__init__(f"{detail} (failed step: {step})" if step else detail)
        self.step = step

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.step:
            d["step"] = self.step
        return d
