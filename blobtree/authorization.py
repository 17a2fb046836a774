"""
Authorization rules for blobtree operations

Callers have any combination of three roles, ordered READER < UPLOADER < ADMIN, where each
role includes the permissions of the roles below it. Every operation requires a minimum role.

Downloads are the one exception: a valid download token (see blobtree.tokens) for exactly the
requested object grants access without any role.
"""

from enum import Enum

from blobtree.errors import PermissionDenied
from blobtree.models import RoleFlags, Roles
from blobtree.paths import normalize
from blobtree.tokens import CapabilityTokens


class Operation(str, Enum):
    LIST = "list"
    EXISTS = "exists"
    DOWNLOAD = "download"
    ISSUE_TOKEN = "issue-token"
    UPLOAD = "upload"
    STAGE_CHUNK = "stage-chunk"
    COMMIT_CHUNKS = "commit-chunks"
    DELETE = "delete"
    MOVE = "move"
    RENAME = "rename"
    CREATE_FOLDER = "create-folder"
    DELETE_FOLDER = "delete-folder"


REQUIRED_ROLES: dict[Operation, Roles] = {
    Operation.LIST: Roles.READER,
    Operation.EXISTS: Roles.READER,
    Operation.DOWNLOAD: Roles.READER,
    Operation.ISSUE_TOKEN: Roles.READER,
    Operation.UPLOAD: Roles.UPLOADER,
    Operation.STAGE_CHUNK: Roles.UPLOADER,
    Operation.COMMIT_CHUNKS: Roles.UPLOADER,
    Operation.DELETE: Roles.UPLOADER,
    Operation.MOVE: Roles.UPLOADER,
    Operation.RENAME: Roles.UPLOADER,
    Operation.CREATE_FOLDER: Roles.UPLOADER,
    Operation.DELETE_FOLDER: Roles.UPLOADER,
}


def satisfies(roles: RoleFlags | None, required: Roles) -> bool:
    if required == Roles.NONE:
        return True
    if roles is None:
        return False
    if required == Roles.READER:
        return roles.is_reader or roles.is_uploader or roles.is_admin
    if required == Roles.UPLOADER:
        return roles.is_uploader or roles.is_admin
    if required == Roles.ADMIN:
        return roles.is_admin
    return False


class AuthorizationGate:
    def __init__(self, tokens: CapabilityTokens):
        self.tokens = tokens

    def allows(
        self, roles: RoleFlags | None, operation: Operation, key: str | None = None, token: str | None = None
    ) -> bool:
        if satisfies(roles, REQUIRED_ROLES[operation]):
            return True
        if operation == Operation.DOWNLOAD and token and key:
            bound_path = self.tokens.verify(token)
            return bound_path is not None and bound_path == normalize(key)
        return False

    def check(
        self, roles: RoleFlags | None, operation: Operation, key: str | None = None, token: str | None = None
    ) -> None:
        """
        Raise PermissionDenied if the caller may not perform the operation.
        token is only considered for downloads, and only for the key it was issued for.
        """
        if not self.allows(roles, operation, key=key, token=token):
            required = REQUIRED_ROLES[operation]
            if operation == Operation.DOWNLOAD and token:
                raise PermissionDenied("Invalid or expired download token")
            raise PermissionDenied(f"{operation.value} requires {required.name} permissions")
