"""Turn ordered change operations into statement descriptors."""

from dataclasses import dataclass, field
from typing import Any

from pgstruct.exceptions import PlanError
from pgstruct.plan.builder import Plan, phase_of
from pgstruct.schema.diff import ChangeOp
from pgstruct.schema.exporter import (
    column_to_dict,
    constraint_to_dict,
    index_to_dict,
    table_to_dict,
)
from pgstruct.types import ChangeKind, Phase, QualifiedName


@dataclass(frozen=True)
class Statement:
    """Semantic content of one DDL statement: target, verb and parameters.

    ``payload`` holds plain data only, so a statement can be logged, dumped
    to YAML, or rendered by any executor.
    """

    ordinal: int
    target: QualifiedName
    verb: ChangeKind
    payload: dict[str, Any] = field(default_factory=dict)
    phase: Phase = Phase.COLUMNS
    destructive: bool = False

    def describe(self) -> str:
        return f"#{self.ordinal} {self.verb.value}: {self.target}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "target": str(self.target),
            "verb": self.verb.value,
            "phase": self.phase.name.lower(),
            "payload": self.payload,
        }


class StatementEmitter:
    """Map each planned operation to exactly one statement descriptor."""

    def emit(self, plan: Plan) -> list[Statement]:
        return [
            Statement(
                ordinal=ordinal,
                target=op.target,
                verb=op.kind,
                payload=self._payload(op),
                phase=phase_of(op),
                destructive=op.is_destructive,
            )
            for ordinal, op in enumerate(plan.ops)
        ]

    def _payload(self, op: ChangeOp) -> dict[str, Any]:
        builders = {
            ChangeKind.CREATE_SCHEMA: self._schema_payload,
            ChangeKind.DROP_SCHEMA: self._schema_payload,
            ChangeKind.CREATE_TABLE: self._create_table_payload,
            ChangeKind.DROP_TABLE: self._drop_table_payload,
            ChangeKind.ADD_COLUMN: self._add_column_payload,
            ChangeKind.DROP_COLUMN: self._drop_column_payload,
            ChangeKind.ALTER_COLUMN_TYPE: self._alter_type_payload,
            ChangeKind.ALTER_COLUMN_NULLABILITY: self._alter_nullability_payload,
            ChangeKind.ALTER_COLUMN_DEFAULT: self._alter_default_payload,
            ChangeKind.ADD_CONSTRAINT: self._add_constraint_payload,
            ChangeKind.DROP_CONSTRAINT: self._drop_constraint_payload,
            ChangeKind.ADD_INDEX: self._add_index_payload,
            ChangeKind.DROP_INDEX: self._drop_index_payload,
            ChangeKind.SET_COMMENT: self._comment_payload,
            ChangeKind.CLEAR_COMMENT: self._comment_payload,
        }
        builder = builders.get(op.kind)
        if not builder:
            raise PlanError(f"No statement for {op.kind}")
        return builder(op)

    def _schema_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"name": op.target.schema}

    def _create_table_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"table": table_to_dict(op.details["table"])}

    def _drop_table_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"name": op.target.table}

    def _add_column_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"column": column_to_dict(op.details["column"])}

    def _drop_column_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"column": op.target.member}

    def _alter_type_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {
            "column": op.details["column"],
            "from_type": op.details["from_type"].render(),
            "to_type": op.details["to_type"].render(),
        }

    def _alter_nullability_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"column": op.details["column"], "nullable": op.details["to_nullable"]}

    def _alter_default_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"column": op.details["column"], "default": op.details["to_default"]}

    def _add_constraint_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"constraint": constraint_to_dict(op.constraint)}

    def _drop_constraint_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"name": op.constraint.name, "kind": op.constraint.kind.value}

    def _add_index_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"index": index_to_dict(op.index)}

    def _drop_index_payload(self, op: ChangeOp) -> dict[str, Any]:
        return {"name": op.index.name}

    def _comment_payload(self, op: ChangeOp) -> dict[str, Any]:
        # None clears the comment; "" sets an empty one.
        return {"owner_kind": op.details["owner_kind"], "text": op.details.get("text")}
