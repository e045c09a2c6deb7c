"""Changeset wire model - targets, operations, previews, file changes.

Every model forbids unknown fields and integers are strict (no
numeric strings, floats or booleans). Targets and operations are closed tagged
unions keyed by ``type``; a target without ``type`` is a node target. Legacy
v1 operations (flat ``identity``/``kind``/``span_hint``/``expected_old_hash``
fields) are only accepted when the validation context carries
``allow_legacy=True``.

``handle_ref`` targets are replaced with the referenced node target of the
same file's ``handle_table`` during validation, so nothing past this module
ever sees a ``HandleRefTarget``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    StrictInt,
    Tag,
    ValidationInfo,
    model_validator,
)

from editplane.config.constants import TRANSACTION_MODE_ALL_OR_NOTHING

LEGACY_OPERATION_FIELDS = ("identity", "kind", "span_hint", "expected_old_hash")

_NODE_ONLY_FIELDS = ("identity", "kind", "span_hint", "expected_old_hash")
_LINE_ONLY_FIELDS = ("anchor", "end_anchor")


def _reject_foreign_fields(data: Any, foreign: tuple[str, ...], template: str) -> None:
    if not isinstance(data, dict):
        return
    present = [name for name in foreign if name in data]
    if present:
        raise ValueError(template.format(fields=", ".join(present)))


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Span(_WireModel):
    """Half-open byte range ``[start, end)``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    start: StrictInt = Field(..., ge=0)
    end: StrictInt = Field(..., ge=0)

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"


# =============================================================================
# Targets
# =============================================================================


class NodeTarget(_WireModel):
    """AST node located by identity; span_hint only disambiguates duplicates."""

    type: Literal["node"] = "node"
    identity: str
    kind: str
    span_hint: Span | None = None
    expected_old_hash: str

    @model_validator(mode="before")
    @classmethod
    def _reject_non_node_fields(cls, data: Any) -> Any:
        _reject_foreign_fields(
            data,
            ("expected_file_hash", *_LINE_ONLY_FIELDS),
            "node target does not accept non-node fields: {fields}",
        )
        return data

    @property
    def precondition_hash(self) -> str:
        return self.expected_old_hash


class _FileTarget(_WireModel):
    expected_file_hash: str

    @model_validator(mode="before")
    @classmethod
    def _reject_node_fields(cls, data: Any) -> Any:
        _reject_foreign_fields(
            data,
            (*_NODE_ONLY_FIELDS, *_LINE_ONLY_FIELDS),
            "file-level targets do not accept node-only fields: {fields}",
        )
        return data

    @property
    def precondition_hash(self) -> str:
        return self.expected_file_hash


class FileStartTarget(_FileTarget):
    """Zero-width position at the start of the file (after any BOM)."""

    type: Literal["file_start"]


class FileEndTarget(_FileTarget):
    """Zero-width position at the end of the file."""

    type: Literal["file_end"]


class LineTarget(_WireModel):
    """One line, or an inclusive line range, addressed by hashline anchors."""

    type: Literal["line"]
    anchor: str
    end_anchor: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _reject_non_line_fields(cls, data: Any) -> Any:
        _reject_foreign_fields(
            data,
            (*_NODE_ONLY_FIELDS, "expected_file_hash"),
            "line targets do not accept non-line fields: {fields}",
        )
        return data


class HandleRefTarget(_WireModel):
    """Indirection into the owning file change's ``handle_table``."""

    type: Literal["handle_ref"]
    ref: str


def _target_tag(value: Any) -> str | None:
    if isinstance(value, dict):
        tag = value.get("type", "node")
        return tag if isinstance(tag, str) else None
    return getattr(value, "type", None)


Target = Annotated[
    Annotated[NodeTarget, Tag("node")]
    | Annotated[FileStartTarget, Tag("file_start")]
    | Annotated[FileEndTarget, Tag("file_end")]
    | Annotated[LineTarget, Tag("line")]
    | Annotated[HandleRefTarget, Tag("handle_ref")],
    Discriminator(_target_tag),
]

ResolvedTarget = NodeTarget | FileStartTarget | FileEndTarget | LineTarget


# =============================================================================
# Operations
# =============================================================================


class ReplaceOp(_WireModel):
    type: Literal["replace"]
    new_text: str


class DeleteOp(_WireModel):
    type: Literal["delete"]


class InsertBeforeOp(_WireModel):
    type: Literal["insert_before"]
    new_text: str


class InsertAfterOp(_WireModel):
    type: Literal["insert_after"]
    new_text: str


class InsertOp(_WireModel):
    """Insert at a file_start/file_end point."""

    type: Literal["insert"]
    new_text: str


class MoveBeforeOp(_WireModel):
    """Same-file reorder: move the target in front of ``destination``."""

    type: Literal["move_before"]
    destination: Target


class MoveAfterOp(_WireModel):
    type: Literal["move_after"]
    destination: Target


class MoveToBeforeOp(_WireModel):
    """Cross-file move: delete here, insert before ``destination`` in another file."""

    type: Literal["move_to_before"]
    destination_file: str
    destination: Target


class MoveToAfterOp(_WireModel):
    type: Literal["move_to_after"]
    destination_file: str
    destination: Target


class MoveOp(_WireModel):
    """Whole-file rename/relocate."""

    type: Literal["move"]
    to: str


Op = Annotated[
    ReplaceOp
    | DeleteOp
    | InsertBeforeOp
    | InsertAfterOp
    | InsertOp
    | MoveBeforeOp
    | MoveAfterOp
    | MoveToBeforeOp
    | MoveToAfterOp
    | MoveOp,
    Field(discriminator="type"),
]

REWRITE_OPS = frozenset(
    {"replace", "delete", "move_before", "move_after", "move_to_before", "move_to_after"}
)
INSERT_OPS = frozenset({"insert_before", "insert_after", "insert"})
SAME_FILE_MOVE_OPS = frozenset({"move_before", "move_after"})
CROSS_FILE_MOVE_OPS = frozenset({"move_to_before", "move_to_after"})

_ALLOWED_OPS: dict[str, frozenset[str]] = {
    "node": frozenset(
        {
            "replace",
            "delete",
            "insert_before",
            "insert_after",
            "move_before",
            "move_after",
            "move_to_before",
            "move_to_after",
        }
    ),
    "file_start": frozenset({"insert"}),
    "file_end": frozenset({"insert"}),
    "line": frozenset({"replace", "insert_after"}),
}


def op_new_text(op: Any) -> str:
    """Text an operation writes at its matched span (empty for deletes and moves)."""
    return getattr(op, "new_text", "")


# =============================================================================
# Preview
# =============================================================================


class MovePreview(_WireModel):
    from_: str = Field(..., alias="from")
    to: str


class Preview(_WireModel):
    """Caller's expectation of the edit; verified against the resolved edit."""

    old_text: str | None = None
    old_hash: str | None = None
    old_len: StrictInt | None = Field(None, ge=0)
    new_text: str
    matched_span: Span
    move: MovePreview | None = None

    @property
    def has_compact_old_state(self) -> bool:
        return self.old_hash is not None or self.old_len is not None


# =============================================================================
# Operation / FileChange / Changeset
# =============================================================================


class Operation(_WireModel):
    target: Target
    op: Op
    preview: Preview

    @model_validator(mode="before")
    @classmethod
    def _convert_legacy_shape(cls, data: Any, info: ValidationInfo) -> Any:
        if not isinstance(data, dict):
            return data
        legacy = [name for name in LEGACY_OPERATION_FIELDS if name in data]
        if not legacy:
            return data
        if "target" in data:
            raise ValueError(
                "operation.target cannot be combined with legacy "
                "identity/kind/span_hint/expected_old_hash fields"
            )
        allow_legacy = bool(info.context and info.context.get("allow_legacy"))
        if not allow_legacy:
            raise ValueError(
                f"legacy v1 operation field `{legacy[0]}` is no longer supported; "
                "wrap identity/kind/span_hint/expected_old_hash in operation.target"
            )
        converted = {k: v for k, v in data.items() if k not in LEGACY_OPERATION_FIELDS}
        converted["target"] = {"type": "node", **{name: data[name] for name in legacy}}
        return converted


def _deref(table: dict[str, NodeTarget] | None, target: Any) -> ResolvedTarget:
    if not isinstance(target, HandleRefTarget):
        return target  # type: ignore[no-any-return]
    if table is None:
        raise ValueError(
            "handle_ref target requires file-scoped 'handle_table' in the same request shape"
        )
    resolved = table.get(target.ref)
    if resolved is None:
        raise ValueError(f"unknown handle_ref '{target.ref}'; add it to this file's handle_table")
    return resolved.model_copy(deep=True)


def deref_operations(table: dict[str, NodeTarget] | None, operations: list[Any]) -> None:
    """Replace ``handle_ref`` targets and destinations with their table entries."""
    for operation in operations:
        operation.target = _deref(table, operation.target)
        destination = getattr(operation.op, "destination", None)
        if destination is not None:
            operation.op.destination = _deref(table, destination)


def normalize_single_file_shape(data: Any) -> Any:
    """Rewrite ``{"file", "operations", "handle_table"?}`` into ``{"files": [...]}``."""
    if not isinstance(data, dict):
        return data
    single_fields = [name for name in ("file", "operations", "handle_table") if name in data]
    if "files" in data and single_fields:
        raise ValueError(
            "cannot include both 'file' and 'files' shapes; batch field 'files' cannot be "
            "combined with single-file fields ('file', 'operations', 'handle_table')"
        )
    if "files" in data or not single_fields:
        return data
    normalized = {key: value for key, value in data.items() if key not in single_fields}
    normalized["files"] = [{name: data[name] for name in single_fields}]
    return normalized


class FileChange(_WireModel):
    file: str
    handle_table: dict[str, NodeTarget] | None = None
    operations: list[Operation]

    @model_validator(mode="after")
    def _resolve_handle_refs(self) -> FileChange:
        deref_operations(self.handle_table, self.operations)
        for index, operation in enumerate(self.operations):
            check_target_op_compatibility(index, operation)
        return self

    @property
    def moves(self) -> list[MoveOp]:
        return [operation.op for operation in self.operations if isinstance(operation.op, MoveOp)]


def check_target_op_compatibility(index: int, operation: Operation) -> None:
    """Reject target/op pairs that have no defined edit view."""
    op_type = operation.op.type
    if op_type == "move":
        # The target of a whole-file move is a placeholder.
        return
    target_type = operation.target.type
    if op_type not in _ALLOWED_OPS.get(target_type, frozenset()):
        raise ValueError(
            f"Operation {index} has unsupported target/op combination: "
            f"'{target_type}' target cannot be used with '{op_type}' operation"
        )
    if (
        isinstance(operation.target, LineTarget)
        and operation.target.end_anchor is not None
        and op_type != "replace"
    ):
        raise ValueError("Line target with end_anchor is only valid for replace operations")


class Transaction(_WireModel):
    mode: Literal["all_or_nothing"] = TRANSACTION_MODE_ALL_OR_NOTHING


class Changeset(_WireModel):
    """Batch of file changes committed as one transaction.

    Accepts the single-file sugar ``{"file", "operations", "handle_table"?}``
    and rewrites it into the batch shape.
    """

    files: list[FileChange]
    transaction: Transaction = Field(default_factory=Transaction)

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        return normalize_single_file_shape(data)

    @model_validator(mode="after")
    def _require_files(self) -> Changeset:
        if not self.files:
            raise ValueError("changeset.files must contain at least one file")
        return self

    @property
    def operation_count(self) -> int:
        return sum(len(change.operations) for change in self.files)

    def to_wire(self) -> dict[str, Any]:
        """JSON form that ``load_changeset`` accepts back unchanged."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Edit requests
# =============================================================================
# An edit request names targets and ops but no previews; ``epl edit`` resolves
# each target and writes the preview. Line-oriented op spellings are accepted
# here and canonicalized to ``replace``/``insert_after``.


class SetLineOp(_WireModel):
    type: Literal["set_line"]
    new_text: str


class ReplaceLinesOp(_WireModel):
    type: Literal["replace_lines", "replace_range"]
    new_text: str


class InsertAfterLineOp(_WireModel):
    type: Literal["insert_after_line", "line_insert_after"]
    text: str


EditOp = Annotated[
    ReplaceOp
    | DeleteOp
    | InsertBeforeOp
    | InsertAfterOp
    | InsertOp
    | MoveBeforeOp
    | MoveAfterOp
    | MoveToBeforeOp
    | MoveToAfterOp
    | MoveOp
    | SetLineOp
    | ReplaceLinesOp
    | InsertAfterLineOp,
    Field(discriminator="type"),
]


def canonical_op(op: Any) -> Any:
    """Map the line-oriented spellings onto the changeset op they stand for."""
    if isinstance(op, SetLineOp | ReplaceLinesOp):
        return ReplaceOp(type="replace", new_text=op.new_text)
    if isinstance(op, InsertAfterLineOp):
        return InsertAfterOp(type="insert_after", new_text=op.text)
    return op


class EditOperation(_WireModel):
    """A target plus an op; flat node fields are folded into ``target``."""

    target: Target
    op: EditOp

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_node_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        flat = [name for name in LEGACY_OPERATION_FIELDS if name in data]
        if not flat:
            return data
        if "target" in data:
            raise ValueError(
                "operation.target cannot be combined with legacy "
                "identity/kind/span_hint/expected_old_hash fields"
            )
        folded = {k: v for k, v in data.items() if k not in LEGACY_OPERATION_FIELDS}
        folded["target"] = {"type": "node", **{name: data[name] for name in flat}}
        return folded


class EditFile(_WireModel):
    file: str
    handle_table: dict[str, NodeTarget] | None = None
    operations: list[EditOperation]

    @model_validator(mode="after")
    def _resolve_handle_refs(self) -> EditFile:
        deref_operations(self.handle_table, self.operations)
        return self


class EditRequest(_WireModel):
    """Body of ``epl edit --json`` without its ``command`` field."""

    files: list[EditFile]

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if data.get("files") == []:
                raise ValueError(
                    "edit JSON request field 'files' must contain at least one file entry"
                )
            if not {"file", "files", "operations", "handle_table"} & data.keys():
                raise ValueError(
                    "edit JSON request must include either single-file ('file' + 'operations') "
                    "or batch ('files') shape"
                )
        return normalize_single_file_shape(data)
