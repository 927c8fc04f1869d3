"""Interface for interacting with the user (output only).

Defines the contract for displaying results, tables, information, warnings
and errors, allowing different UI implementations (e.g., console, plain
text for tool responses).
"""

import abc
from typing import Any, Optional, Sequence


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_json(self, data: Any) -> None:
        """Displays structured data as JSON."""
        pass

    @abc.abstractmethod
    def display_table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        """Displays rows under the given column headers."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, details: Optional[Any] = None) -> None:
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str) -> None:
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str) -> None:
        pass
