import io

import pytest

from footnote.assembler import assemble
from footnote.config import MachineConfig
from footnote.isa import isa_manager
from footnote.machine import StackMachine


@pytest.fixture(autouse=True)
def _reset_instruction_set():
    isa_manager.load_default()
    yield
    isa_manager.load_default()


@pytest.fixture
def make_machine():
    """Build a machine with captured output; ``stdin`` feeds READ."""

    def _make(source: str, memory_size: int = 64, stdin: str = "", max_steps=None) -> StackMachine:
        machine = StackMachine(
            MachineConfig(
                memory_size=memory_size,
                max_steps=max_steps,
                input_stream=io.StringIO(stdin),
                output_stream=io.StringIO(),
            )
        )
        machine.load(assemble(source))
        return machine

    return _make
