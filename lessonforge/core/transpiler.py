"""Compile normalized component source into plain executable module text."""

import ast
import logging

from lessonforge.core.errors import CompileError

logger = logging.getLogger(__name__)

ARTIFACT_HEADER = "# lessonforge compiled lesson artifact\n"


class AnnotationStripper(ast.NodeTransformer):
    """Remove type annotations and __future__ imports from a module tree."""

    def visit_ImportFrom(self, node: ast.ImportFrom):
        if node.module == "__future__":
            return None
        return node

    def visit_AnnAssign(self, node: ast.AnnAssign):
        if node.value is None:
            # Bare declaration, nothing to execute
            return None
        return ast.copy_location(
            ast.Assign(
                targets=[node.target], value=self.visit(node.value), type_comment=None
            ),
            node,
        )

    def visit_arguments(self, node: ast.arguments):
        for arg in (*node.posonlyargs, *node.args, *node.kwonlyargs):
            arg.annotation = None
        if node.vararg:
            node.vararg.annotation = None
        if node.kwarg:
            node.kwarg.annotation = None
        self.generic_visit(node)
        return node

    def _strip_function(self, node):
        node.returns = None
        if hasattr(node, "type_params"):
            node.type_params = []
        return self.generic_visit(node)

    visit_FunctionDef = _strip_function
    visit_AsyncFunctionDef = _strip_function

    def generic_visit(self, node):
        super().generic_visit(node)
        # A block emptied by stripping still has to be a valid block
        if not isinstance(node, ast.Module) and getattr(node, "body", None) == []:
            node.body = [ast.Pass()]
        return node


def transpile(source: str, filename: str = "lesson.py") -> str:
    """Transpile component source to executable module text.

    Raises:
        CompileError: With the compiler's own message when the source is invalid.
    """
    try:
        tree = ast.parse(source, filename=filename)
        tree = AnnotationStripper().visit(tree)
        ast.fix_missing_locations(tree)
        compile(tree, filename, "exec")
    except (SyntaxError, ValueError) as e:
        raise CompileError(str(e)) from e

    module_text = ARTIFACT_HEADER + ast.unparse(tree) + "\n"
    logger.debug("Transpiled %s: %d -> %d chars", filename, len(source), len(module_text))
    return module_text
