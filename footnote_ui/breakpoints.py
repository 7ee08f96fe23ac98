from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from PyQt6.QtCore import QAbstractTableModel, QModelIndex, QObject, Qt, pyqtSignal
from PyQt6.QtGui import QColor
from PyQt6.QtWidgets import (
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QLineEdit,
    QMessageBox,
    QWidget,
)

from footnote.assembler import parse_literal
from footnote.cpu import REGISTER_ORDER


log = logging.getLogger(__name__)


class BreakpointType(Enum):
    LINE = "Line"
    TEMPORARY_LINE = "Temporary"
    REGISTER_CONDITION = "Register"
    MEMORY_CONDITION = "Memory"


LINE_TYPES = {BreakpointType.LINE, BreakpointType.TEMPORARY_LINE}


@dataclass
class Breakpoint:
    id: int
    type: BreakpointType
    enabled: bool
    file_path: Optional[str]
    line: Optional[int]
    name: Optional[str]
    address: Optional[int]
    op: Optional[str]
    value: Optional[int]
    hit_count: int = 0
    last_hit_timestamp: Optional[float] = None

    def describe_condition(self) -> str:
        if self.value is None or not self.op:
            return "-"
        if self.type == BreakpointType.REGISTER_CONDITION and self.name:
            return f"{self.name} {self.op} {self.value}"
        if self.type == BreakpointType.MEMORY_CONDITION and self.address is not None:
            return f"[{self.address}] {self.op} {self.value}"
        return "-"


class BreakpointManager(QObject):
    """Line and condition breakpoints for the debugger.

    Line breakpoints are stored per absolute file path. Whether a line can
    actually stop the machine depends on the line map of the last assembly,
    which the window hands over with ``set_valid_lines``.
    """

    changed = pyqtSignal()

    def __init__(self) -> None:
        super().__init__()
        self._next_id = 1
        self._breakpoints: dict[int, Breakpoint] = {}
        self._valid_lines: dict[str, set[int]] = {}

    def _normalize_path(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return os.path.abspath(path)

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def _add(self, bp: Breakpoint) -> int:
        self._breakpoints[bp.id] = bp
        self.changed.emit()
        return bp.id

    def list_all(self) -> list[Breakpoint]:
        return sorted(self._breakpoints.values(), key=lambda bp: bp.id)

    def get(self, bp_id: int) -> Optional[Breakpoint]:
        return self._breakpoints.get(bp_id)

    def get_line_breakpoints(self, file_path: Optional[str]) -> list[Breakpoint]:
        norm = self._normalize_path(file_path)
        if not norm:
            return []
        return [bp for bp in self._breakpoints.values() if bp.file_path == norm and bp.type in LINE_TYPES]

    def add_line(self, file_path: Optional[str], line: int, temporary: bool = False) -> int:
        norm = self._normalize_path(file_path)
        line_type = BreakpointType.TEMPORARY_LINE if temporary else BreakpointType.LINE
        for bp in self._breakpoints.values():
            if bp.type == line_type and bp.file_path == norm and bp.line == line:
                if not bp.enabled:
                    bp.enabled = True
                    self.changed.emit()
                return bp.id
        return self._add(
            Breakpoint(
                id=self._new_id(),
                type=line_type,
                enabled=True,
                file_path=norm,
                line=line,
                name=None,
                address=None,
                op=None,
                value=None,
            )
        )

    def toggle_line(self, file_path: Optional[str], line: int) -> bool:
        norm = self._normalize_path(file_path)
        for bp_id, bp in list(self._breakpoints.items()):
            if bp.type == BreakpointType.LINE and bp.file_path == norm and bp.line == line:
                del self._breakpoints[bp_id]
                self.changed.emit()
                return False
        self.add_line(norm, line, temporary=False)
        return True

    def add_register_condition(self, name: str, value: int) -> int:
        upper = name.upper()
        if upper not in REGISTER_ORDER:
            raise ValueError(f"Unknown register: {name}")
        return self._add(
            Breakpoint(
                id=self._new_id(),
                type=BreakpointType.REGISTER_CONDITION,
                enabled=True,
                file_path=None,
                line=None,
                name=upper,
                address=None,
                op="==",
                value=value,
            )
        )

    def add_memory_condition(self, address: int, value: int) -> int:
        if address < 0:
            raise ValueError(f"Negative address: {address}")
        return self._add(
            Breakpoint(
                id=self._new_id(),
                type=BreakpointType.MEMORY_CONDITION,
                enabled=True,
                file_path=None,
                line=None,
                name=None,
                address=address,
                op="==",
                value=value,
            )
        )

    def set_enabled(self, bp_id: int, enabled: bool) -> None:
        bp = self._breakpoints.get(bp_id)
        if not bp or bp.enabled == enabled:
            return
        bp.enabled = enabled
        self.changed.emit()

    def remove(self, bp_id: int) -> None:
        if bp_id in self._breakpoints:
            del self._breakpoints[bp_id]
            self.changed.emit()

    def clear(self) -> None:
        if self._breakpoints:
            self._breakpoints.clear()
            self.changed.emit()

    def increment_hit(self, bp_id: int) -> bool:
        """Count a hit. Returns True when the breakpoint was temporary and is now gone."""
        bp = self._breakpoints.get(bp_id)
        if not bp:
            return False
        bp.hit_count += 1
        bp.last_hit_timestamp = time.time()
        if bp.type == BreakpointType.TEMPORARY_LINE:
            del self._breakpoints[bp_id]
            self.changed.emit()
            return True
        self.changed.emit()
        return False

    def set_valid_lines(self, file_path: Optional[str], lines: Iterable[int]) -> None:
        norm = self._normalize_path(file_path)
        if not norm:
            return
        self._valid_lines[norm] = set(lines)
        self.changed.emit()

    def line_has_instruction(self, file_path: Optional[str], line: Optional[int]) -> bool:
        if not file_path or line is None:
            return False
        norm = self._normalize_path(file_path)
        if not norm:
            return False
        if norm not in self._valid_lines:
            return True
        return line in self._valid_lines.get(norm, set())

    def should_break(self, file_path: Optional[str], line: Optional[int], machine) -> tuple[bool, Optional[int], str]:
        """Check every enabled breakpoint against the machine before its next step.

        ``line`` is the source line of the instruction at the current pc, or
        None when the pc is not the start of an assembled instruction.
        """
        norm = self._normalize_path(file_path)
        for bp in self.list_all():
            if not bp.enabled:
                continue
            if bp.type in LINE_TYPES:
                if norm and bp.file_path == norm and line is not None and bp.line == line:
                    if not self.line_has_instruction(norm, line):
                        continue
                    return True, bp.id, f"{bp.type.value} breakpoint at {os.path.basename(norm)}:{line}"
            elif bp.type == BreakpointType.REGISTER_CONDITION:
                if bp.name and bp.value is not None and machine.cpu.get_reg(bp.name) == bp.value:
                    return True, bp.id, bp.describe_condition()
            elif bp.type == BreakpointType.MEMORY_CONDITION:
                if bp.address is None or bp.value is None or not machine.memory.in_bounds(bp.address):
                    continue
                if machine.memory.read(bp.address) == bp.value:
                    return True, bp.id, bp.describe_condition()
        return False, None, ""

    def to_json(self) -> dict:
        return {
            "next_id": self._next_id,
            "breakpoints": [
                {
                    "id": bp.id,
                    "type": bp.type.value,
                    "enabled": bp.enabled,
                    "file_path": bp.file_path,
                    "line": bp.line,
                    "name": bp.name,
                    "address": bp.address,
                    "op": bp.op,
                    "value": bp.value,
                    "hit_count": bp.hit_count,
                    "last_hit_timestamp": bp.last_hit_timestamp,
                }
                for bp in self.list_all()
            ],
        }

    def load_json(self, data: dict) -> None:
        self._breakpoints.clear()
        self._next_id = int(data.get("next_id", 1))
        for item in data.get("breakpoints", []):
            try:
                bp_type = BreakpointType(item.get("type", BreakpointType.LINE.value))
            except ValueError:
                log.warning("Skipping breakpoint with unknown type %r", item.get("type"))
                continue
            bp = Breakpoint(
                id=int(item.get("id", self._new_id())),
                type=bp_type,
                enabled=bool(item.get("enabled", True)),
                file_path=item.get("file_path"),
                line=item.get("line"),
                name=item.get("name"),
                address=item.get("address"),
                op=item.get("op"),
                value=item.get("value"),
                hit_count=int(item.get("hit_count", 0)),
                last_hit_timestamp=item.get("last_hit_timestamp"),
            )
            self._breakpoints[bp.id] = bp
            self._next_id = max(self._next_id, bp.id + 1)
        self.changed.emit()


class BreakpointsTableModel(QAbstractTableModel):
    headers = ["Enabled", "Type", "Location", "Condition", "Hit Count", "Remove"]

    def __init__(self, manager: BreakpointManager, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.manager = manager
        self._rows: list[Breakpoint] = []
        self.manager.changed.connect(self.refresh)
        self.refresh()

    def refresh(self) -> None:
        self.beginResetModel()
        self._rows = self.manager.list_all()
        self.endResetModel()

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:  # type: ignore[override]
        return 0 if parent.isValid() else len(self._rows)

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:  # type: ignore[override]
        return 0 if parent.isValid() else len(self.headers)

    def headerData(self, section: int, orientation: Qt.Orientation, role: int = Qt.ItemDataRole.DisplayRole):
        if role == Qt.ItemDataRole.DisplayRole and orientation == Qt.Orientation.Horizontal:
            return self.headers[section]
        return None

    def flags(self, index: QModelIndex) -> Qt.ItemFlag:  # type: ignore[override]
        if not index.isValid():
            return Qt.ItemFlag.NoItemFlags
        base = Qt.ItemFlag.ItemIsEnabled | Qt.ItemFlag.ItemIsSelectable
        if index.column() == 0:
            return base | Qt.ItemFlag.ItemIsUserCheckable
        return base

    def _unmapped(self, bp: Breakpoint) -> bool:
        return bool(bp.file_path and bp.line) and not self.manager.line_has_instruction(bp.file_path, bp.line)

    def data(self, index: QModelIndex, role: int = Qt.ItemDataRole.DisplayRole):  # type: ignore[override]
        if not index.isValid():
            return None
        bp = self._rows[index.row()]
        column = index.column()

        if role == Qt.ItemDataRole.CheckStateRole and column == 0:
            return Qt.CheckState.Checked if bp.enabled else Qt.CheckState.Unchecked

        if role == Qt.ItemDataRole.DisplayRole:
            if column == 1:
                return bp.type.value
            if column == 2:
                if bp.file_path and bp.line:
                    location = f"{os.path.basename(bp.file_path)}:{bp.line}"
                    return f"{location} (no instruction)" if self._unmapped(bp) else location
                return "-"
            if column == 3:
                return bp.describe_condition()
            if column == 4:
                return str(bp.hit_count)
            if column == 5:
                return "Remove"
        if role == Qt.ItemDataRole.ForegroundRole:
            if not bp.enabled:
                return QColor("#6272a4")
            if bp.type == BreakpointType.TEMPORARY_LINE:
                return QColor("#ffb86c")
            if self._unmapped(bp):
                return QColor("#ff5555")
        if role == Qt.ItemDataRole.ToolTipRole and self._unmapped(bp):
            return "No instruction was assembled from this line."
        return None

    def setData(self, index: QModelIndex, value, role: int = Qt.ItemDataRole.EditRole) -> bool:  # type: ignore[override]
        if not index.isValid() or index.column() != 0:
            return False
        if role == Qt.ItemDataRole.CheckStateRole:
            bp = self._rows[index.row()]
            self.manager.set_enabled(bp.id, value == Qt.CheckState.Checked.value or value == Qt.CheckState.Checked)
            return True
        return False

    def breakpoint_at(self, row: int) -> Optional[Breakpoint]:
        if 0 <= row < len(self._rows):
            return self._rows[row]
        return None


class ConditionalBreakpointDialog(QDialog):
    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Add Conditional Breakpoint")
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QFormLayout(self)

        self.kind_combo = QComboBox()
        self.kind_combo.addItems([BreakpointType.REGISTER_CONDITION.value, BreakpointType.MEMORY_CONDITION.value])
        self.kind_combo.currentIndexChanged.connect(self._on_kind_changed)
        layout.addRow("Type", self.kind_combo)

        self.name_combo = QComboBox()
        self.name_combo.addItems(list(REGISTER_ORDER))
        layout.addRow("Register", self.name_combo)

        self.address_edit = QLineEdit()
        self.address_edit.setPlaceholderText("Address, e.g. 200 or 0xC8")
        self.address_edit.setEnabled(False)
        layout.addRow("Address", self.address_edit)

        self.value_edit = QLineEdit()
        self.value_edit.setPlaceholderText("0x10, 16 or -1")
        layout.addRow("Value", self.value_edit)

        buttons = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addRow(buttons)

    def _on_kind_changed(self, index: int) -> None:
        is_register = index == 0
        self.name_combo.setEnabled(is_register)
        self.address_edit.setEnabled(not is_register)

    def get_data(self) -> Optional[tuple[BreakpointType, str, Optional[int], int]]:
        """Returns (type, register name, address, value) or None if cancelled."""
        if self.exec() != QDialog.DialogCode.Accepted:
            return None
        value = parse_literal(self.value_edit.text().strip())
        if value is None:
            QMessageBox.warning(self, "Invalid Value", "Value must be a decimal or hex number.")
            return None
        kind = BreakpointType(self.kind_combo.currentText())
        if kind == BreakpointType.REGISTER_CONDITION:
            return kind, self.name_combo.currentText(), None, value
        address = parse_literal(self.address_edit.text().strip())
        if address is None or address < 0:
            QMessageBox.warning(self, "Invalid Address", "Address must be a non-negative decimal or hex number.")
            return None
        return kind, "", address, value
