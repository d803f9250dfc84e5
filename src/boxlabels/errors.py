"""Error taxonomy for box label validation and normalization.

Every validation failure raised while building a datastore derives from
`BoxLabelError`. Errors carry optional context (table index, row index,
column name); normalizers add that context by re-raising the same error type
with `with_context`, chaining the original as ``__cause__``.
"""

from __future__ import annotations

from typing import Self


class BoxLabelError(ValueError):
    """Base class for all box label validation errors.

    Attributes:
        table_index: 0-based index of the offending input table, if known.
        row_index: 0-based index of the offending row, if known.
        column: Name of the offending table column, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        table_index: int | None = None,
        row_index: int | None = None,
        column: str | None = None,
    ) -> None:
        self.message = message
        self.table_index = table_index
        self.row_index = row_index
        self.column = column
        super().__init__(self._format())

    def _format(self) -> str:
        where: list[str] = []
        if self.table_index is not None:
            where.append(f"table {self.table_index}")
        if self.row_index is not None:
            where.append(f"row {self.row_index}")
        if self.column is not None:
            where.append(f"column {self.column!r}")
        if not where:
            return self.message
        return f"Invalid data in {', '.join(where)}: {self.message}"

    def with_context(
        self,
        *,
        table_index: int | None = None,
        row_index: int | None = None,
        column: str | None = None,
    ) -> Self:
        """Return a copy of this error with extra location context.

        Context already present on the error wins over the new values, so the
        innermost location is never overwritten by an outer wrapper.
        """
        return type(self)(
            self.message,
            table_index=self.table_index if self.table_index is not None else table_index,
            row_index=self.row_index if self.row_index is not None else row_index,
            column=self.column if self.column is not None else column,
        )


class InvalidTableError(BoxLabelError):
    """Input is not a table, or the table has no rows or no columns."""


class InvalidBoxFormatError(BoxLabelError):
    """A box matrix has the wrong type, dimensionality or width."""


class LabelCountMismatchError(BoxLabelError):
    """The number of labels differs from the number of boxes in a row."""


class InvalidLabelTypeError(BoxLabelError):
    """Labels are not categorical / text as required by the table shape."""


class MixedBoxFormatsInTableError(BoxLabelError):
    """A single table mixes box formats across its rows or columns."""


class MixedTableTypesError(BoxLabelError):
    """Input tables resolve to incompatible table shape families."""


class MixedBoxFormatsAcrossTablesError(BoxLabelError):
    """Tables are individually valid but use different box formats."""


class TileImageIndexOutOfRangeError(BoxLabelError):
    """A block set refers to an image index beyond the label data."""


class UnsupportedGeometryForTilingError(BoxLabelError):
    """Block set cropping was requested for non axis-aligned boxes."""
