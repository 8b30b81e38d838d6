import ast
from typing import List, Optional


class _StringLiteralVisitor(ast.NodeVisitor):
    def __init__(self):
        self.literals: List[str] = []

    def visit_Constant(self, node: ast.Constant):
        if isinstance(node.value, str):
            self.literals.append(node.value)
        self.generic_visit(node)

    def visit_JoinedStr(self, node: ast.JoinedStr):
        # f-strings: only the literal head can carry a usable origin
        head = node.values[0] if node.values else None
        if isinstance(head, ast.Constant) and isinstance(head.value, str):
            self.literals.append(head.value)


def python_string_literals(source_text: str) -> Optional[List[str]]:
    """
    Every str constant in a Python module, comments excluded.
    Returns None when the source does not parse so callers can fall back to a lexer.
    """
    try:
        tree = ast.parse(source_text)
    except (SyntaxError, ValueError):
        return None

    v = _StringLiteralVisitor()
    v.visit(tree)
    return v.literals
