from __future__ import annotations

import io
import json
import logging
import os
from typing import Optional

from PyQt6.QtCore import QObject, QRect, QSize, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import (
    QAction,
    QColor,
    QFont,
    QFontDatabase,
    QKeySequence,
    QPainter,
    QPalette,
    QShortcut,
    QSyntaxHighlighter,
    QTextCharFormat,
    QTextCursor,
)
from PyQt6.QtWidgets import (
    QAbstractItemView,
    QApplication,
    QDockWidget,
    QFileDialog,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QSpinBox,
    QSplitter,
    QStatusBar,
    QTableView,
    QTableWidget,
    QTableWidgetItem,
    QTabWidget,
    QTextEdit,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from footnote.assembler import DIRECTIVES, Assembler, parse_literal
from footnote.config import DEFAULT_MEMORY_SIZE, SOURCE_SUFFIX, MachineConfig
from footnote.cpu import REGISTER_ORDER
from footnote.errors import AssemblyError, FootnoteError
from footnote.isa import isa_manager
from footnote.machine import MachineState, StackMachine, StepOutcome
from footnote.memory import fits_word
from footnote.model import Program
from footnote_ui.breakpoints import (
    BreakpointManager,
    BreakpointsTableModel,
    BreakpointType,
    ConditionalBreakpointDialog,
)


log = logging.getLogger(__name__)

SETTINGS_DIR = os.path.join(os.path.expanduser("~"), ".footnote")
CHANGED_BG = QColor("#ffb86c")
CHANGED_FG = QColor("#1a1b26")


class FootnoteHighlighter(QSyntaxHighlighter):
    def __init__(self, parent) -> None:
        super().__init__(parent)
        self.mnemonic_format = QTextCharFormat()
        self.mnemonic_format.setForeground(QColor("#ff79c6"))
        self.mnemonic_format.setFontWeight(QFont.Weight.Bold)

        self.directive_format = QTextCharFormat()
        self.directive_format.setForeground(QColor("#8be9fd"))
        self.directive_format.setFontWeight(QFont.Weight.Medium)

        self.label_format = QTextCharFormat()
        self.label_format.setForeground(QColor("#50fa7b"))

        self.number_format = QTextCharFormat()
        self.number_format.setForeground(QColor("#ffb86c"))

        self.comment_format = QTextCharFormat()
        self.comment_format.setForeground(QColor("#6272a4"))

        self.refresh_mnemonics()

    def refresh_mnemonics(self) -> None:
        self.mnemonics = set(isa_manager.mnemonics())
        self.rehighlight()

    def highlightBlock(self, text: str) -> None:
        comment_index = text.find(";")
        if comment_index >= 0:
            self.setFormat(comment_index, len(text) - comment_index, self.comment_format)
            text = text[:comment_index]

        position = 0
        for token in text.split():
            start = text.index(token, position)
            position = start + len(token)
            upper = token.upper()
            if token.endswith(":"):
                self.setFormat(start, len(token), self.label_format)
            elif upper in self.mnemonics:
                self.setFormat(start, len(token), self.mnemonic_format)
            elif upper in DIRECTIVES:
                self.setFormat(start, len(token), self.directive_format)
            elif parse_literal(token) is not None:
                self.setFormat(start, len(token), self.number_format)


class LineNumberArea(QWidget):
    def __init__(self, editor: "CodeEditor") -> None:
        super().__init__(editor)
        self.editor = editor

    def sizeHint(self) -> QSize:
        return QSize(self.editor.line_number_area_width(), 0)

    def paintEvent(self, event) -> None:
        self.editor.line_number_area_paint_event(event)

    def mousePressEvent(self, event) -> None:
        self.editor.line_number_area_mouse_event(event)


class CodeEditor(QPlainTextEdit):
    """Source editor with a gutter showing line numbers and breakpoints.

    Clicking the gutter emits ``breakpoint_toggle_requested`` with the
    1-based line number; the window decides what to do with it.
    """

    breakpoint_toggle_requested = pyqtSignal(int)

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._gutter_bg = QColor("#1e1f29")
        self._gutter_fg = QColor("#6272a4")
        self._marker_width = 14
        self._marker_colors = {
            BreakpointType.LINE: QColor("#ff5555"),
            BreakpointType.TEMPORARY_LINE: QColor("#ffb86c"),
        }
        self._marker_disabled = QColor("#6272a4")
        self.breakpoint_manager: Optional[BreakpointManager] = None
        self.current_file: Optional[str] = None
        self.line_number_area = LineNumberArea(self)

        self.blockCountChanged.connect(self.update_line_number_area_width)
        self.updateRequest.connect(self.update_line_number_area)
        self.update_line_number_area_width(0)

    def set_gutter_colors(self, background: QColor, foreground: QColor) -> None:
        self._gutter_bg = background
        self._gutter_fg = foreground
        self.line_number_area.update()

    def line_number_area_width(self) -> int:
        digits = max(1, len(str(self.blockCount())))
        return self._marker_width + 10 + self.fontMetrics().horizontalAdvance("9") * digits

    def set_breakpoint_manager(self, manager: Optional[BreakpointManager]) -> None:
        self.breakpoint_manager = manager
        self.line_number_area.update()

    def set_current_file(self, path: Optional[str]) -> None:
        self.current_file = path
        self.line_number_area.update()

    def update_line_number_area_width(self, _block_count: int) -> None:
        self.setViewportMargins(self.line_number_area_width(), 0, 0, 0)

    def update_line_number_area(self, rect: QRect, dy: int) -> None:
        if dy:
            self.line_number_area.scroll(0, dy)
        else:
            self.line_number_area.update(0, rect.y(), self.line_number_area.width(), rect.height())
        if rect.contains(self.viewport().rect()):
            self.update_line_number_area_width(0)

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        contents = self.contentsRect()
        self.line_number_area.setGeometry(
            QRect(contents.left(), contents.top(), self.line_number_area_width(), contents.height())
        )

    def _markers(self) -> dict:
        markers = {}
        if self.breakpoint_manager and self.current_file:
            for bp in self.breakpoint_manager.get_line_breakpoints(self.current_file):
                # a temporary breakpoint wins the gutter over a permanent one
                if bp.line is not None and (bp.type == BreakpointType.TEMPORARY_LINE or bp.line not in markers):
                    markers[bp.line] = bp
        return markers

    def line_number_area_paint_event(self, event) -> None:
        painter = QPainter(self.line_number_area)
        painter.fillRect(event.rect(), self._gutter_bg)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        markers = self._markers()
        line_height = self.fontMetrics().height()

        block = self.firstVisibleBlock()
        line_no = block.blockNumber() + 1
        top = self.blockBoundingGeometry(block).translated(self.contentOffset()).top()
        bottom = top + self.blockBoundingRect(block).height()

        while block.isValid() and top <= event.rect().bottom():
            if block.isVisible() and bottom >= event.rect().top():
                bp = markers.get(line_no)
                if bp:
                    radius = 5
                    center_x = self._marker_width // 2
                    center_y = int(top + line_height / 2)
                    if bp.enabled:
                        color = self._marker_colors[bp.type]
                        painter.setPen(color)
                        painter.setBrush(color)
                    else:
                        painter.setPen(self._marker_disabled)
                        painter.setBrush(Qt.BrushStyle.NoBrush)
                    painter.drawEllipse(center_x - radius, center_y - radius, radius * 2, radius * 2)
                painter.setPen(self._gutter_fg)
                painter.drawText(
                    self._marker_width,
                    int(top),
                    self.line_number_area.width() - self._marker_width - 6,
                    int(line_height),
                    Qt.AlignmentFlag.AlignRight | Qt.AlignmentFlag.AlignVCenter,
                    str(line_no),
                )
            block = block.next()
            top = bottom
            bottom = top + self.blockBoundingRect(block).height()
            line_no += 1

    def line_number_area_mouse_event(self, event) -> None:
        if event.button() != Qt.MouseButton.LeftButton:
            return
        cursor = self.cursorForPosition(event.position().toPoint())
        self.breakpoint_toggle_requested.emit(cursor.blockNumber() + 1)


class QtLogHandler(logging.Handler, QObject):
    """Forwards log records to the window's log pane through a queued signal."""

    record_emitted = pyqtSignal(str)

    def __init__(self) -> None:
        logging.Handler.__init__(self)
        QObject.__init__(self)
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.record_emitted.emit(self.format(record))


class MainWindow(QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Footnote Debugger")
        self.resize(1280, 760)

        self.current_file: Optional[str] = None
        self.source_dirty = True
        self.updating_views = False
        self.run_state = "Ready"
        self.prev_registers: dict[str, int] = {}
        self.prev_memory: list[int] = []
        self._skip_breakpoint_id: Optional[int] = None
        self.recent_files: list[str] = []
        self._max_recent_files = 10

        self.program: Optional[Program] = None
        self.machine = StackMachine(MachineConfig(memory_size=DEFAULT_MEMORY_SIZE))
        self.breakpoint_manager = BreakpointManager()

        self.timer = QTimer(self)
        self.timer.timeout.connect(self.on_timer_step)

        self._build_ui()
        self._install_log_handler()
        self._setup_shortcuts()
        self._load_layout()
        self._load_breakpoints()
        self._update_views()

    # -- construction -----------------------------------------------------

    def _setup_shortcuts(self) -> None:
        self.shortcuts: list[QShortcut] = []
        shortcut_map = [
            ("F5", self.play),
            ("Shift+F5", self.pause),
            ("F7", self.assemble_source),
            ("F9", self.toggle_breakpoint_at_cursor),
            ("F10", self.step_once),
            ("Ctrl+Shift+F5", self.reset_state),
            ("PgUp", lambda: self._adjust_step_rate(1)),
            ("PgDown", lambda: self._adjust_step_rate(-1)),
        ]
        for sequence, handler in shortcut_map:
            shortcut = QShortcut(QKeySequence(sequence), self)
            shortcut.activated.connect(handler)
            self.shortcuts.append(shortcut)

    def _install_log_handler(self) -> None:
        self.log_handler = QtLogHandler()
        self.log_handler.setLevel(logging.INFO)
        self.log_handler.record_emitted.connect(self.log)
        logging.getLogger("footnote").addHandler(self.log_handler)

    def _add_action(self, menu, text: str, handler) -> QAction:
        action = QAction(text, self)
        action.triggered.connect(handler)
        menu.addAction(action)
        return action

    def _build_ui(self) -> None:
        self.file_menu = self.menuBar().addMenu("File")
        self.debug_menu = self.menuBar().addMenu("Debug")
        self.view_menu = self.menuBar().addMenu("View")

        self._add_action(self.file_menu, "New", self.new_file)
        self._add_action(self.file_menu, "Open", self.open_file)
        self.open_recent_menu = self.file_menu.addMenu("Open Recent")
        self._rebuild_recent_menu()
        self._add_action(self.file_menu, "Save", self.save_file)
        self._add_action(self.file_menu, "Save As", self.save_file_as)
        self._add_action(self.file_menu, "Load Instruction Set...", self.load_instruction_set)
        self._add_action(self.file_menu, "Exit", self.close)

        self._add_action(self.debug_menu, "Assemble", self.assemble_source)
        self._add_action(self.debug_menu, "Toggle Breakpoint", self.toggle_breakpoint_at_cursor)
        self._add_action(self.debug_menu, "Run To Cursor", self.break_here)
        self._add_action(self.debug_menu, "Add Conditional Breakpoint...", self.add_conditional_breakpoint)
        self._add_action(self.debug_menu, "Clear All Breakpoints", self.breakpoint_manager.clear)

        center_panel = QWidget()
        center_layout = QVBoxLayout(center_panel)
        center_layout.setContentsMargins(8, 8, 8, 8)
        center_layout.addWidget(self._build_center_controls())
        self.editor = CodeEditor()
        self.editor.setFont(self._default_font())
        self.editor.textChanged.connect(self.on_text_changed)
        self.editor.set_breakpoint_manager(self.breakpoint_manager)
        self.editor.set_current_file(self._current_file_key())
        self.editor.breakpoint_toggle_requested.connect(self.on_gutter_breakpoint_toggle)
        self.highlighter = FootnoteHighlighter(self.editor.document())
        center_layout.addWidget(self.editor)
        center_layout.addLayout(self._build_editor_footer())

        self.program_output = QPlainTextEdit()
        self.program_output.setReadOnly(True)
        self.program_output.setFont(self._default_font())
        self.input_edit = QPlainTextEdit()
        self.input_edit.setFont(self._default_font())
        self.input_edit.setPlaceholderText("One integer per line, consumed by READ")
        self.log_output = QPlainTextEdit()
        self.log_output.setReadOnly(True)
        self.log_output.setFont(self._default_font())

        output_tabs = QTabWidget()
        output_tabs.addTab(self._build_output_panel(self.program_output, self.program_output.clear), "Program Output")
        output_tabs.addTab(self.input_edit, "Program Input")
        output_tabs.addTab(self._build_output_panel(self.log_output, self.log_output.clear), "Log")

        main_splitter = QSplitter(Qt.Orientation.Vertical)
        main_splitter.setChildrenCollapsible(False)
        main_splitter.addWidget(center_panel)
        main_splitter.addWidget(output_tabs)
        main_splitter.setStretchFactor(0, 3)
        main_splitter.setStretchFactor(1, 1)
        main_splitter.setSizes([560, 200])
        self.main_splitter = main_splitter
        self.setCentralWidget(main_splitter)

        self.register_table = QTableWidget(len(REGISTER_ORDER), 3)
        self.register_table.setHorizontalHeaderLabels(["Register", "Dec", "Hex"])
        self.register_table.verticalHeader().setVisible(False)
        self.register_table.cellChanged.connect(self.on_register_edit)
        self.stack_table = QTableWidget(0, 3)
        self.stack_table.setHorizontalHeaderLabels(["Address", "Value", "Markers"])
        self.stack_table.verticalHeader().setVisible(False)
        self.stack_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        machine_panel = QWidget()
        machine_layout = QVBoxLayout(machine_panel)
        machine_layout.setContentsMargins(4, 4, 4, 4)
        machine_layout.addWidget(QLabel("Registers"))
        machine_layout.addWidget(self.register_table, 1)
        machine_layout.addWidget(QLabel("Operand Stack (top first)"))
        machine_layout.addWidget(self.stack_table, 3)
        self._add_dock("Machine", "MachineDock", machine_panel, Qt.DockWidgetArea.RightDockWidgetArea)

        self.memory_base = QLineEdit("0")
        self.memory_base.setPlaceholderText("Start address")
        self.memory_base.editingFinished.connect(self._update_views)
        self.memory_rows = QSpinBox()
        self.memory_rows.setRange(1, 4096)
        self.memory_rows.setValue(64)
        self.memory_rows.valueChanged.connect(lambda _rows: self._update_views())
        self.memory_table = QTableWidget(0, 6)
        self.memory_table.setHorizontalHeaderLabels(["Address", "Dec", "Hex", "Decoded", "Line", "Markers"])
        self.memory_table.verticalHeader().setVisible(False)
        self.memory_table.cellChanged.connect(self.on_memory_edit)
        memory_controls = QHBoxLayout()
        memory_controls.addWidget(QLabel("Base"))
        memory_controls.addWidget(self.memory_base)
        memory_controls.addWidget(QLabel("Rows"))
        memory_controls.addWidget(self.memory_rows)
        memory_panel = QWidget()
        memory_layout = QVBoxLayout(memory_panel)
        memory_layout.setContentsMargins(4, 4, 4, 4)
        memory_layout.addLayout(memory_controls)
        memory_layout.addWidget(self.memory_table)
        self._add_dock("Memory", "MemoryDock", memory_panel, Qt.DockWidgetArea.RightDockWidgetArea)

        self.symbol_table = QTableWidget(0, 3)
        self.symbol_table.setHorizontalHeaderLabels(["Symbol", "Address", "Line"])
        self.symbol_table.verticalHeader().setVisible(False)
        self.symbol_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        self.symbol_table.setSelectionBehavior(QTableWidget.SelectionBehavior.SelectRows)
        self.symbol_table.cellDoubleClicked.connect(self.on_symbol_activated)
        self._add_dock("Symbols", "SymbolsDock", self.symbol_table, Qt.DockWidgetArea.LeftDockWidgetArea)

        self._add_dock("Instruction Set", "IsaDock", self._build_isa_tab(), Qt.DockWidgetArea.LeftDockWidgetArea)

        self.breakpoints_model = BreakpointsTableModel(self.breakpoint_manager)
        self.breakpoints_view = QTableView()
        self.breakpoints_view.setModel(self.breakpoints_model)
        self.breakpoints_view.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.breakpoints_view.setSelectionMode(QAbstractItemView.SelectionMode.SingleSelection)
        self.breakpoints_view.setAlternatingRowColors(True)
        self.breakpoints_view.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        self.breakpoints_view.verticalHeader().setVisible(False)
        self.breakpoints_view.clicked.connect(self.on_breakpoints_table_clicked)
        self._add_dock("Breakpoints", "BreakpointsDock", self.breakpoints_view, Qt.DockWidgetArea.BottomDockWidgetArea)

        for table in (self.register_table, self.stack_table, self.memory_table, self.symbol_table, self.isa_table):
            table.setFont(self._default_font())
            header = table.horizontalHeader()
            header.setSectionResizeMode(QHeaderView.ResizeMode.Interactive)
            header.setStretchLastSection(True)

        status = QStatusBar()
        self.setStatusBar(status)
        self.state_label = QLabel("Ready")
        self.line_label = QLabel("Line: -")
        status.addWidget(self.state_label)
        status.addPermanentWidget(self.line_label)

        self._apply_dracula_theme()
        self.breakpoint_manager.changed.connect(self._on_breakpoints_changed)
        isa_manager.on_change(self._on_isa_changed)

    def _add_dock(self, title: str, object_name: str, widget: QWidget, area: Qt.DockWidgetArea) -> QDockWidget:
        dock = QDockWidget(title, self)
        dock.setObjectName(object_name)
        dock.setWidget(widget)
        self.addDockWidget(area, dock)
        self.view_menu.addAction(dock.toggleViewAction())
        return dock

    def _build_output_panel(self, text_edit: QPlainTextEdit, clear_handler) -> QWidget:
        container = QWidget()
        layout = QVBoxLayout(container)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(4)
        controls = QHBoxLayout()
        controls.setContentsMargins(8, 6, 8, 0)
        controls.addStretch(1)
        clear_button = QToolButton()
        clear_button.setText("Clear")
        clear_button.setAutoRaise(True)
        clear_button.clicked.connect(clear_handler)
        controls.addWidget(clear_button)
        layout.addLayout(controls)
        layout.addWidget(text_edit)
        return container

    def _build_center_controls(self) -> QWidget:
        widget = QWidget()
        layout = QHBoxLayout(widget)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(12)
        layout.setAlignment(Qt.AlignmentFlag.AlignLeft)
        for text, tip, handler in (
            ("Assemble", "Assemble (F7)", self.assemble_source),
            ("Run", "Run (F5)", self.play),
            ("Pause", "Pause (Shift+F5)", self.pause),
            ("Step", "Step (F10)", self.step_once),
            ("Reset", "Reset (Ctrl+Shift+F5)", self.reset_state),
        ):
            button = QToolButton()
            button.setText(text)
            button.setToolTip(tip)
            button.clicked.connect(handler)
            layout.addWidget(button)
        return widget

    def _build_editor_footer(self) -> QHBoxLayout:
        layout = QHBoxLayout()
        layout.setContentsMargins(0, 8, 0, 0)
        layout.addWidget(QLabel("Memory words"))
        self.memory_spin = QSpinBox()
        self.memory_spin.setRange(1, 1 << 20)
        self.memory_spin.setValue(DEFAULT_MEMORY_SIZE)
        self.memory_spin.valueChanged.connect(self._on_memory_size_changed)
        layout.addWidget(self.memory_spin)
        layout.addStretch(1)
        layout.addWidget(QLabel("Steps/s"))
        self.rate_spin = QSpinBox()
        self.rate_spin.setRange(1, 1000)
        self.rate_spin.setValue(5)
        self.rate_spin.valueChanged.connect(self._update_timer_interval)
        layout.addWidget(self.rate_spin)
        return layout

    def _build_isa_tab(self) -> QWidget:
        widget = QWidget()
        layout = QVBoxLayout(widget)
        layout.setContentsMargins(0, 0, 0, 0)
        self.isa_search = QLineEdit()
        self.isa_search.setPlaceholderText("Search instructions...")
        self.isa_search.textChanged.connect(self.filter_isa_sheet)
        layout.addWidget(self.isa_search)
        self.isa_table = QTableWidget(0, 5)
        self.isa_table.setHorizontalHeaderLabels(["Opcode", "Mnemonic", "Syntax", "Summary", "Description"])
        self.isa_table.verticalHeader().setVisible(False)
        self.isa_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        self.isa_table.setSelectionBehavior(QTableWidget.SelectionBehavior.SelectRows)
        layout.addWidget(self.isa_table)
        self._populate_isa_sheet()
        return widget

    def _default_font(self) -> QFont:
        preferred = [
            "JetBrains Mono",
            "Cascadia Code",
            "Fira Code",
            "Source Code Pro",
            "DejaVu Sans Mono",
            "Consolas",
            "Menlo",
        ]
        available = set(QFontDatabase.families())
        for name in preferred:
            if name in available:
                return QFont(name, 11)
        return QFont("Monospace", 11)

    def _apply_dracula_theme(self) -> None:
        base_bg = QColor("#282a36")
        text_fg = QColor("#f8f8f2")
        highlight_bg = QColor("#44475a")
        panel_bg = QColor("#1e1f29")
        border = QColor("#3c3f58")

        for edit in (self.editor, self.program_output, self.input_edit, self.log_output):
            edit.setStyleSheet(
                "QPlainTextEdit {"
                f" background-color: {base_bg.name()};"
                f" color: {text_fg.name()};"
                f" selection-background-color: {highlight_bg.name()};"
                " }"
            )
        self.editor.set_gutter_colors(panel_bg, QColor("#6272a4"))

        table_style = (
            "QTableWidget, QTableView {"
            f" background-color: {panel_bg.name()};"
            f" color: {text_fg.name()};"
            f" gridline-color: {border.name()};"
            "}"
            "QHeaderView::section {"
            f" background-color: {border.name()};"
            f" color: {text_fg.name()};"
            " padding: 4px;"
            "}"
        )
        for table in (
            self.register_table,
            self.stack_table,
            self.memory_table,
            self.symbol_table,
            self.isa_table,
            self.breakpoints_view,
        ):
            table.setStyleSheet(table_style)

        palette = self.palette()
        palette.setColor(QPalette.ColorRole.Window, panel_bg)
        palette.setColor(QPalette.ColorRole.Base, base_bg)
        palette.setColor(QPalette.ColorRole.Text, text_fg)
        palette.setColor(QPalette.ColorRole.Button, panel_bg)
        palette.setColor(QPalette.ColorRole.ButtonText, text_fg)
        palette.setColor(QPalette.ColorRole.WindowText, text_fg)
        palette.setColor(QPalette.ColorRole.Highlight, highlight_bg)
        self.setPalette(palette)

    # -- settings ---------------------------------------------------------

    def _current_file_key(self) -> str:
        return self.current_file or "__unsaved__"

    def _set_current_file(self, path: Optional[str]) -> None:
        self.current_file = os.path.abspath(path) if path else None
        self.editor.set_current_file(self._current_file_key())
        title = "Footnote Debugger"
        self.setWindowTitle(f"{title} - {self.current_file}" if self.current_file else title)

    def _settings_path(self, name: str) -> str:
        return os.path.join(SETTINGS_DIR, name)

    def _load_layout(self) -> None:
        path = self._settings_path("layout.json")
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
            if data.get("geometry"):
                self.restoreGeometry(bytes.fromhex(data["geometry"]))
            if data.get("state"):
                self.restoreState(bytes.fromhex(data["state"]))
            if data.get("main_sizes"):
                sizes = [int(size) for size in data["main_sizes"]]
                QTimer.singleShot(0, lambda: self.main_splitter.setSizes(sizes))
            if data.get("rate"):
                self.rate_spin.setValue(int(data["rate"]))
            if data.get("memory_size"):
                self.memory_spin.setValue(int(data["memory_size"]))
            if data.get("memory_rows"):
                self.memory_rows.setValue(int(data["memory_rows"]))
            recent = data.get("recent_files", [])
            if isinstance(recent, list):
                self.recent_files = [item for item in recent if isinstance(item, str)]
                self._rebuild_recent_menu()
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable layout file %s: %s", path, exc)

    def _save_layout(self) -> None:
        data = {
            "geometry": self.saveGeometry().toHex().data().decode("ascii"),
            "state": self.saveState().toHex().data().decode("ascii"),
            "main_sizes": self.main_splitter.sizes(),
            "rate": self.rate_spin.value(),
            "memory_size": self.memory_spin.value(),
            "memory_rows": self.memory_rows.value(),
            "recent_files": self.recent_files,
        }
        try:
            os.makedirs(SETTINGS_DIR, exist_ok=True)
            with open(self._settings_path("layout.json"), "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
        except OSError as exc:
            log.warning("Could not save layout: %s", exc)

    def _load_breakpoints(self) -> None:
        path = self._settings_path("breakpoints.json")
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as handle:
                self.breakpoint_manager.load_json(json.load(handle))
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable breakpoints file %s: %s", path, exc)

    def _save_breakpoints(self) -> None:
        try:
            os.makedirs(SETTINGS_DIR, exist_ok=True)
            with open(self._settings_path("breakpoints.json"), "w", encoding="utf-8") as handle:
                json.dump(self.breakpoint_manager.to_json(), handle, indent=2)
        except OSError as exc:
            log.warning("Could not save breakpoints: %s", exc)

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self.timer.stop()
        self._save_layout()
        self._save_breakpoints()
        logging.getLogger("footnote").removeHandler(self.log_handler)
        super().closeEvent(event)

    def _rebuild_recent_menu(self) -> None:
        self.open_recent_menu.clear()
        if not self.recent_files:
            empty = self.open_recent_menu.addAction("(empty)")
            empty.setEnabled(False)
            return
        for path in self.recent_files:
            action = self.open_recent_menu.addAction(path)
            action.triggered.connect(lambda checked=False, p=path: self._open_file_path(p))
        self.open_recent_menu.addSeparator()
        self._add_action(self.open_recent_menu, "Clear Recent", self.clear_recent_files)

    def _add_recent_file(self, path: str) -> None:
        if path in self.recent_files:
            self.recent_files.remove(path)
        self.recent_files.insert(0, path)
        del self.recent_files[self._max_recent_files:]
        self._rebuild_recent_menu()

    def clear_recent_files(self) -> None:
        self.recent_files = []
        self._rebuild_recent_menu()

    # -- files ------------------------------------------------------------

    def _open_file_path(self, path: str) -> bool:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                self.editor.setPlainText(handle.read())
        except OSError as exc:
            QMessageBox.warning(self, "Open Failed", str(exc))
            return False
        self._set_current_file(path)
        self.source_dirty = True
        self.program = None
        self._add_recent_file(self.current_file)
        self.log(f"Opened {path}")
        return True

    def on_text_changed(self) -> None:
        self.source_dirty = True

    def new_file(self) -> None:
        self.editor.clear()
        self._set_current_file(None)
        self.program = None
        self.source_dirty = True

    def open_file(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Footnote source", "", f"Footnote Source (*{SOURCE_SUFFIX});;All Files (*)"
        )
        if path:
            self._open_file_path(path)

    def save_file(self) -> None:
        if not self.current_file:
            self.save_file_as()
            return
        try:
            with open(self.current_file, "w", encoding="utf-8") as handle:
                handle.write(self.editor.toPlainText())
        except OSError as exc:
            QMessageBox.warning(self, "Save Failed", str(exc))
            return
        self._add_recent_file(self.current_file)
        self.log(f"Saved {self.current_file}")

    def save_file_as(self) -> None:
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Footnote source", "", f"Footnote Source (*{SOURCE_SUFFIX});;All Files (*)"
        )
        if not path:
            return
        self._set_current_file(path)
        self.save_file()

    def load_instruction_set(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Load instruction set", "", "JSON Files (*.json)")
        if not path:
            return
        try:
            isa_manager.load_from_path(path)
        except FootnoteError as exc:
            QMessageBox.warning(self, "Invalid Instruction Set", str(exc))

    def _on_isa_changed(self, _sheet) -> None:
        self._populate_isa_sheet()
        self.highlighter.refresh_mnemonics()
        self.program = None
        self.source_dirty = True

    def _populate_isa_sheet(self) -> None:
        defs = isa_manager.definitions()
        self.isa_table.setRowCount(len(defs))
        for row, defn in enumerate(defs):
            for column, text in enumerate((str(defn.opcode), defn.mnemonic, defn.syntax, defn.summary, defn.description)):
                self.isa_table.setItem(row, column, QTableWidgetItem(text))

    def filter_isa_sheet(self, text: str) -> None:
        query = text.strip().lower()
        for row in range(self.isa_table.rowCount()):
            matches = any(
                query in self.isa_table.item(row, column).text().lower()
                for column in range(self.isa_table.columnCount())
                if self.isa_table.item(row, column)
            )
            self.isa_table.setRowHidden(row, bool(query) and not matches)

    # -- breakpoints ------------------------------------------------------

    def _on_breakpoints_changed(self) -> None:
        self.editor.line_number_area.update()
        self._save_breakpoints()

    def on_gutter_breakpoint_toggle(self, line_no: int) -> None:
        self.breakpoint_manager.toggle_line(self._current_file_key(), line_no)

    def toggle_breakpoint_at_cursor(self) -> None:
        self.on_gutter_breakpoint_toggle(self.editor.textCursor().blockNumber() + 1)

    def break_here(self) -> None:
        line_no = self.editor.textCursor().blockNumber() + 1
        self.breakpoint_manager.add_line(self._current_file_key(), line_no, temporary=True)
        if self.run_state != "Running":
            self.play()

    def add_conditional_breakpoint(self) -> None:
        result = ConditionalBreakpointDialog(self).get_data()
        if not result:
            return
        kind, name, address, value = result
        if kind == BreakpointType.REGISTER_CONDITION:
            self.breakpoint_manager.add_register_condition(name, value)
        elif address is not None:
            self.breakpoint_manager.add_memory_condition(address, value)

    def on_breakpoints_table_clicked(self, index) -> None:
        bp = self.breakpoints_model.breakpoint_at(index.row())
        if not bp or index.column() == 0:
            return
        if index.column() == 5:
            self.breakpoint_manager.remove(bp.id)
            return
        if bp.file_path and bp.line:
            if self.current_file != bp.file_path and not self._open_file_path(bp.file_path):
                return
            self._jump_to_line(bp.line)

    def on_symbol_activated(self, row: int, _column: int) -> None:
        item = self.symbol_table.item(row, 2)
        if item and item.text().isdigit():
            self._jump_to_line(int(item.text()))

    def _jump_to_line(self, line_no: int) -> None:
        block = self.editor.document().findBlockByNumber(line_no - 1)
        if not block.isValid():
            return
        self.editor.setTextCursor(QTextCursor(block))
        self.editor.centerCursor()

    # -- execution --------------------------------------------------------

    def _new_machine(self) -> StackMachine:
        config = MachineConfig(
            memory_size=self.memory_spin.value(),
            input_stream=io.StringIO(self.input_edit.toPlainText()),
            output_stream=io.StringIO(),
        )
        return StackMachine(config)

    def _on_memory_size_changed(self, _value: int) -> None:
        if self.program is not None:
            self.reset_state()

    def assemble_source(self) -> bool:
        self.timer.stop()
        if self.current_file and self.source_dirty:
            self.save_file()
        assembler = Assembler.from_string(self.editor.toPlainText(), name=self._current_file_key())
        try:
            program = assembler.assemble()
        except AssemblyError as exc:
            self.program = None
            self.set_state("Error")
            self.log(f"Assembly failed: {exc}")
            if exc.line_no:
                self._jump_to_line(exc.line_no)
            return False

        self.program = program
        self.source_dirty = False
        self.breakpoint_manager.set_valid_lines(self._current_file_key(), program.line_map.values())
        self._populate_symbols()
        self.log(f"Assembled {len(program)} words, {len(program.symbols)} symbols.")
        return self.reset_state()

    def ensure_program(self) -> bool:
        if self.program is None or self.source_dirty:
            return self.assemble_source()
        return True

    def reset_state(self) -> bool:
        self.timer.stop()
        if self.program is None:
            return self.assemble_source()
        self.machine = self._new_machine()
        try:
            self.machine.load(self.program)
        except FootnoteError as exc:
            self.set_state("Error")
            self.log(f"Load failed: {exc}")
            self._update_views()
            return False
        self.prev_registers = {}
        self.prev_memory = []
        self._skip_breakpoint_id = None
        self.program_output.clear()
        self.set_state("Ready")
        self._update_views()
        return True

    def _finished(self) -> bool:
        if self.machine.state in (MachineState.HALTED, MachineState.FAULTED):
            self.log(f"Machine is {self.machine.state.value}. Reset to run again.")
            return True
        return False

    def play(self) -> None:
        if not self.ensure_program() or self._finished():
            return
        self.set_state("Running")
        self._update_timer_interval()
        self.timer.start()

    def pause(self) -> None:
        self.timer.stop()
        if self.run_state == "Running":
            self.set_state("Paused")
            self._update_views()

    def _current_line(self) -> Optional[int]:
        if self.program is None:
            return None
        return self.program.line_map.get(self.machine.pc)

    def _check_breakpoints_before_step(self) -> bool:
        should_break, bp_id, reason = self.breakpoint_manager.should_break(
            self._current_file_key(), self._current_line(), self.machine
        )
        if not should_break or bp_id is None:
            return False
        if self._skip_breakpoint_id == bp_id:
            self._skip_breakpoint_id = None
            return False
        removed = self.breakpoint_manager.increment_hit(bp_id)
        # resuming must get past the breakpoint that just fired
        self._skip_breakpoint_id = None if removed else bp_id
        self.timer.stop()
        self.set_state("Paused")
        self.log(f"Breakpoint hit: {reason}")
        self._update_views()
        return True

    def step_once(self) -> None:
        self.timer.stop()
        if not self.ensure_program() or self._finished():
            return
        self._skip_breakpoint_id = None
        outcome = self.machine.step()
        self.handle_step_outcome(outcome)
        self._update_views()
        if self.machine.state is MachineState.RUNNING:
            self.set_state("Paused")

    def on_timer_step(self) -> None:
        if self._check_breakpoints_before_step():
            return
        outcome = self.machine.step()
        self.handle_step_outcome(outcome)
        if outcome.fault or outcome.halted:
            self.timer.stop()
            self._update_views()
        elif self.rate_spin.value() <= 60:
            self._update_views()

    def handle_step_outcome(self, outcome: StepOutcome) -> None:
        if outcome.output:
            cursor = self.program_output.textCursor()
            cursor.movePosition(QTextCursor.MoveOperation.End)
            cursor.insertText(outcome.output)
            self.program_output.setTextCursor(cursor)
        if outcome.fault:
            self.set_state("Faulted")
            line_no = self.program.source_line(outcome.fault.pc) if self.program and outcome.fault.pc is not None else None
            suffix = f" (source line {line_no})" if line_no is not None else ""
            self.log(f"Machine fault: {outcome.fault}{suffix}")
            if line_no is not None:
                self._jump_to_line(line_no)
        elif outcome.halted:
            self.set_state("Halted")
            self.log(f"Program halted after {self.machine.steps} steps.")

    def _update_timer_interval(self) -> None:
        self.timer.setInterval(max(1, int(1000 / self.rate_spin.value())))

    def _adjust_step_rate(self, delta: int) -> None:
        value = min(self.rate_spin.maximum(), max(self.rate_spin.minimum(), self.rate_spin.value() + delta))
        self.rate_spin.setValue(value)

    # -- views ------------------------------------------------------------

    def _update_views(self) -> None:
        self.updating_views = True
        try:
            self._update_register_view()
            self._update_stack_view()
            self._update_memory_view()
            self._highlight_current_line()
            self._update_status()
        finally:
            self.updating_views = False

    def _changed_item(self, text: str, changed: bool, editable: bool = False) -> QTableWidgetItem:
        item = QTableWidgetItem(text)
        if not editable:
            item.setFlags(Qt.ItemFlag.ItemIsEnabled)
        if changed:
            item.setBackground(CHANGED_BG)
            item.setForeground(CHANGED_FG)
        return item

    def _update_register_view(self) -> None:
        for row, reg in enumerate(REGISTER_ORDER):
            value = self.machine.cpu.get_reg(reg)
            prev = self.prev_registers.get(reg)
            changed = prev is not None and prev != value
            self.register_table.setItem(row, 0, self._changed_item(reg, False))
            value_item = self._changed_item(str(value), changed, editable=True)
            value_item.setData(Qt.ItemDataRole.UserRole, reg)
            self.register_table.setItem(row, 1, value_item)
            self.register_table.setItem(row, 2, self._changed_item(f"0x{value:X}", changed))
        self.prev_registers = {reg: self.machine.cpu.get_reg(reg) for reg in REGISTER_ORDER}

    def _update_stack_view(self) -> None:
        sp = self.machine.sp
        values = self.machine.stack()
        self.stack_table.setRowCount(len(values))
        for row, value in enumerate(values):
            address = sp + row
            self.stack_table.setItem(row, 0, self._changed_item(str(address), False))
            self.stack_table.setItem(row, 1, self._changed_item(str(value), False))
            self.stack_table.setItem(row, 2, self._changed_item("SP" if address == sp else "", False))

    def _decoded_text(self, address: int) -> str:
        if self.program is None or address not in self.program.line_map:
            return ""
        try:
            return self.machine.decode(address).text
        except FootnoteError:
            return "?"

    def _update_memory_view(self) -> None:
        base = parse_literal(self.memory_base.text().strip())
        if base is None or base < 0:
            self.memory_base.setStyleSheet("color: #ff5555;")
            return
        self.memory_base.setStyleSheet("")
        memory = self.machine.memory
        snapshot = memory.snapshot()
        line_map = self.program.line_map if self.program is not None else {}
        end = min(memory.capacity, base + self.memory_rows.value())
        self.memory_table.setRowCount(max(0, end - base))
        for row, address in enumerate(range(base, end)):
            value = snapshot[address]
            changed = address < len(self.prev_memory) and self.prev_memory[address] != value
            markers = [name for name, reg in (("PC", self.machine.pc), ("SP", self.machine.sp)) if reg == address]
            line_no = line_map.get(address)
            self.memory_table.setItem(row, 0, self._changed_item(str(address), False))
            value_item = self._changed_item(str(value), changed, editable=True)
            value_item.setData(Qt.ItemDataRole.UserRole, address)
            self.memory_table.setItem(row, 1, value_item)
            self.memory_table.setItem(row, 2, self._changed_item(f"0x{value & 0xFFFFFFFF:08X}", changed))
            self.memory_table.setItem(row, 3, self._changed_item(self._decoded_text(address), False))
            self.memory_table.setItem(row, 4, self._changed_item("" if line_no is None else str(line_no), False))
            self.memory_table.setItem(row, 5, self._changed_item(", ".join(markers), False))
        self.prev_memory = snapshot

    def _populate_symbols(self) -> None:
        symbols = sorted(self.program.symbols.items(), key=lambda item: item[1]) if self.program else []
        self.symbol_table.setRowCount(len(symbols))
        for row, (name, address) in enumerate(symbols):
            line_no = self.program.source_line(address)
            self.symbol_table.setItem(row, 0, QTableWidgetItem(name))
            self.symbol_table.setItem(row, 1, QTableWidgetItem(str(address)))
            self.symbol_table.setItem(row, 2, QTableWidgetItem("" if line_no is None else str(line_no)))

    def _highlight_current_line(self) -> None:
        selections = []
        line_no = self._current_line()
        if line_no is not None and not self.source_dirty:
            block = self.editor.document().findBlockByNumber(line_no - 1)
            if block.isValid():
                cursor = QTextCursor(block)
                cursor.select(QTextCursor.SelectionType.LineUnderCursor)
                selection = QTextEdit.ExtraSelection()
                selection.cursor = cursor
                selection.format.setBackground(QColor("#fff2cc"))
                selection.format.setForeground(QColor("#1e1f29"))
                selections.append(selection)
        self.editor.setExtraSelections(selections)

    def _update_status(self) -> None:
        self.state_label.setText(f"{self.run_state} | {self.machine.state.value} | steps: {self.machine.steps}")
        line_no = self._current_line()
        line_text = "-" if line_no is None else str(line_no)
        self.line_label.setText(f"Line: {line_text} | PC: {self.machine.pc} | SP: {self.machine.sp}")

    def set_state(self, state: str) -> None:
        self.run_state = state
        self._update_status()

    def log(self, message: str) -> None:
        self.log_output.appendPlainText(message)

    def _edited_value(self, table: QTableWidget, row: int, column: int):
        if self.updating_views or column != 1:
            return None, None
        item = table.item(row, column)
        if not item or item.data(Qt.ItemDataRole.UserRole) is None:
            return None, None
        value = parse_literal(item.text().strip())
        if value is None or not fits_word(value):
            self.log(f"Invalid value: {item.text()}")
            self._update_views()
            return None, None
        return item.data(Qt.ItemDataRole.UserRole), value

    def on_register_edit(self, row: int, column: int) -> None:
        reg, value = self._edited_value(self.register_table, row, column)
        if reg is None:
            return
        self.machine.cpu.set_reg(reg, value)
        self._update_views()

    def on_memory_edit(self, row: int, column: int) -> None:
        address, value = self._edited_value(self.memory_table, row, column)
        if address is None:
            return
        self.machine.memory.write(int(address), value)
        self._update_views()


def run_app() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    isa_manager.load_default()
    app = QApplication([])
    window = MainWindow()
    window.show()
    app.exec()
