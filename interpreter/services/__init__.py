"""
Interpretation session services.
"""

from interpreter.services.interpreter_coordinator import InterpreterCoordinator, create_interpreter_coordinator

__all__ = ["InterpreterCoordinator", "create_interpreter_coordinator"]
