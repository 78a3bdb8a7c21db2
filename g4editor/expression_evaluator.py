import math
import asteval

def create_configured_asteval():
    """
    Factory function to create and configure a new asteval.Interpreter instance
    for numeric form input (positions in mm, angles in rad).
    """
    aeval = asteval.Interpreter(symtable={}, minimal=True, no_if=True, no_for=True, no_while=True, no_try=True)

    # Add safe math functions
    for func_name in ['sin', 'cos', 'tan', 'asin', 'acos', 'atan', 'atan2',
                      'sqrt', 'exp', 'log', 'log10', 'pow', 'abs']:
        if hasattr(math, func_name):
            aeval.symtable[func_name] = getattr(math, func_name)

    # Constants only. Unit symbols are deliberately absent: values are already canonical.
    aeval.symtable.update({'pi': math.pi, 'PI': math.pi})

    return aeval

class ExpressionEvaluator:
    """A centralized, safe expression evaluator using asteval."""

    def __init__(self):
        self.interpreter = create_configured_asteval()
        self._user_symbols = {}

    def add_symbol(self, name, value):
        """Registers a named value that stays available for later evaluations."""
        self._user_symbols[name] = value
        self.interpreter.symtable[name] = value

    def evaluate(self, expression, symbols=None):
        """
        Safely evaluates an expression string.

        Args:
            expression (str|int|float): The expression to evaluate. Numbers pass through.
            symbols (dict, optional): Extra names valid for this call only.

        Returns:
            tuple: (True, value) on success, (False, error_message) on failure.
        """
        if isinstance(expression, bool):
            return False, f"Invalid numeric value: {expression!r}"
        if isinstance(expression, (int, float)):
            return True, expression
        if not isinstance(expression, str) or not expression.strip():
            return False, f"Invalid numeric value: {expression!r}"

        saved_symbols = {}
        if symbols:
            for name, value in symbols.items():
                if name in self.interpreter.symtable:
                    saved_symbols[name] = self.interpreter.symtable[name]
                self.interpreter.symtable[name] = value

        try:
            result = self.interpreter.eval(expression, show_errors=False, raise_errors=True)
            return True, result
        except Exception as e:
            # asteval exceptions are descriptive and safe to show the user.
            return False, str(e)
        finally:
            # Don't let per-call symbols leak into the next evaluation
            if symbols:
                for name in symbols:
                    if name in saved_symbols:
                        self.interpreter.symtable[name] = saved_symbols[name]
                    elif name in self.interpreter.symtable:
                        del self.interpreter.symtable[name]

    def evaluate_number(self, expression):
        """Like evaluate(), but also requires a finite real number."""
        success, result = self.evaluate(expression)
        if not success:
            return False, result
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            return False, f"Expression '{expression}' did not evaluate to a number"
        if not math.isfinite(result):
            return False, f"Expression '{expression}' is not finite"
        return True, float(result)
