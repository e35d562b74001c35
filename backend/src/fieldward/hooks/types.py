"""Hook system types for Fieldward.

- DeleteOptions: caller-supplied options for a delete
- DeleteHookContext: runtime state passed to before-delete hooks
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fieldward.persistence.client import TransactionalClient


@dataclass(frozen=True)
class DeleteOptions:
    """Options for a single delete.

    Attributes:
        acting_user_id: Id of the user performing the delete
        force: Override system protection and in-use checks
        extra: Free-form values for hooks
    """

    acting_user_id: Any = None
    force: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeleteHookContext:
    """Runtime context passed to every before-delete hook.

    Attributes:
        client: Transactional client; queries run inside the delete transaction
        options: Options the delete was invoked with
        record: Target row as fetched (locked where supported)
        table_name: Table being deleted from
        id: Primary key value of the target
    """

    client: TransactionalClient
    options: DeleteOptions
    record: dict[str, Any]
    table_name: str
    id: Any
