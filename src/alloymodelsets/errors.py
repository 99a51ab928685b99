from __future__ import annotations


class ModelSetError(Exception):
    pass


class CommandParseError(ModelSetError):
    def __init__(self, command_text: str, detail: str) -> None:
        super().__init__(f"cannot parse command {command_text!r}: {detail}")
        self.command_text = command_text
        self.detail = detail


class ResidualCommandError(ModelSetError):
    def __init__(self, residue: str) -> None:
        super().__init__(f"old commands left unexpectedly after rewrite: {residue!r}")
        self.residue = residue


class ResumeStateError(ModelSetError):
    pass
