"""
Syntax-tree endpoint resolution.
Constant-folds string assignments into a per-file symbol table, then resolves
literals, templates, concatenations and network-call arguments against it.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Iterator, Tuple

import esprima

from jsmonitor.core.logger import logger


PLACEHOLDER = "${...}"


@dataclass
class SyntaxCandidate:
    value: str
    category: str
    offset: int
    line: int
    method: str = "UNKNOWN"
    high_confidence: bool = False


@dataclass
class ResolutionResult:
    candidates: List[SyntaxCandidate] = field(default_factory=list)
    degraded: bool = False
    symbols: int = 0


class SymbolTable:
    """Identifier and member-path bindings for a single file."""

    def __init__(self):
        self._values: Dict[str, str] = {}

    def set(self, name: str, value: str):
        self._values[name] = value

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._values


class SyntaxResolver:

    NETWORK_CALLS = ("fetch", "get", "post", "put", "patch", "delete", "head", "options", "ajax")
    MAX_TREE_DEPTH = 500
    MAX_RESOLVE_DEPTH = 50
    PARSE_OPTIONS = {"tolerant": True, "loc": True, "range": True}

    def __init__(self, silent_mode: bool = False):
        self.silent_mode = silent_mode

    def parse(self, content: str) -> Optional[Dict[str, Any]]:
        for parser in (esprima.parseScript, esprima.parseModule):
            try:
                return parser(content, self.PARSE_OPTIONS).toDict()
            except RecursionError:
                return None
            except Exception as e:
                logger.debug(f"{parser.__name__} failed: {str(e)[:80]}")
        return None

    def resolve(self, content: str) -> ResolutionResult:
        tree = self.parse(content)
        if tree is None:
            return ResolutionResult(degraded=True)

        table = SymbolTable()
        try:
            self._collect_symbols(tree, table)
            candidates = list(self._collect_candidates(tree, table))
        except RecursionError:
            return ResolutionResult(degraded=True)
        return ResolutionResult(candidates=candidates, symbols=len(table))

    def _walk(self, root: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        stack: List[Tuple[Any, int]] = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            if not isinstance(node, dict) or "type" not in node:
                continue
            yield node
            if depth >= self.MAX_TREE_DEPTH:
                continue
            children = []
            for key, value in node.items():
                if key in ("loc", "range", "type"):
                    continue
                if isinstance(value, dict):
                    children.append(value)
                elif isinstance(value, list):
                    children.extend(v for v in value if isinstance(v, dict))
            for child in reversed(children):
                stack.append((child, depth + 1))

    def member_name(self, node: Optional[Dict[str, Any]]) -> Optional[str]:
        if not node or node.get("type") != "MemberExpression":
            return None
        parts = []
        current = node
        steps = 0
        while current and steps < self.MAX_RESOLVE_DEPTH:
            steps += 1
            kind = current.get("type")
            if kind == "MemberExpression":
                prop = current.get("property") or {}
                if current.get("computed"):
                    if prop.get("type") == "Literal" and isinstance(prop.get("value"), str):
                        parts.append(prop["value"])
                    else:
                        return None
                elif prop.get("name"):
                    parts.append(prop["name"])
                current = current.get("object")
            elif kind == "Identifier":
                parts.append(current["name"])
                break
            elif kind == "ThisExpression":
                parts.append("this")
                break
            else:
                return None
        return ".".join(reversed(parts)) if parts else None

    def resolve_value(self, node: Optional[Dict[str, Any]], table: SymbolTable, depth: int = 0) -> Optional[str]:
        if not node or depth > self.MAX_RESOLVE_DEPTH:
            return None
        kind = node.get("type")

        if kind == "Literal":
            value = node.get("value")
            if isinstance(value, str):
                return value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return node.get("raw") or str(value)
            return None

        if kind == "Identifier":
            return table.get(node.get("name"))

        if kind == "MemberExpression":
            name = self.member_name(node)
            return table.get(name) if name else None

        if kind == "BinaryExpression" and node.get("operator") == "+":
            left = self.resolve_value(node.get("left"), table, depth + 1)
            if left is None:
                return None
            right = self.resolve_value(node.get("right"), table, depth + 1)
            if right is None:
                return None
            return left + right

        if kind == "TemplateLiteral":
            return self.reconstruct_template(node, table, depth)

        return None

    def reconstruct_template(self, node: Dict[str, Any], table: Optional[SymbolTable], depth: int = 0) -> str:
        quasis = node.get("quasis") or []
        expressions = node.get("expressions") or []
        result = []
        for index, quasi in enumerate(quasis):
            value = quasi.get("value") or {}
            cooked = value.get("cooked")
            result.append(cooked if cooked is not None else value.get("raw", ""))
            if index < len(expressions):
                resolved = None
                if table is not None:
                    resolved = self.resolve_value(expressions[index], table, depth + 1)
                result.append(resolved if resolved else PLACEHOLDER)
        return "".join(result)

    def _collect_symbols(self, tree: Dict[str, Any], table: SymbolTable):
        for node in self._walk(tree):
            kind = node.get("type")

            if kind == "VariableDeclarator":
                target = node.get("id") or {}
                init = node.get("init")
                if target.get("type") != "Identifier" or not init:
                    continue
                name = target["name"]
                if init.get("type") == "ObjectExpression":
                    self._collect_object(name, init, table)
                    continue
                value = self.resolve_value(init, table)
                if value is not None:
                    table.set(name, value)

            elif kind == "AssignmentExpression" and node.get("operator") == "=":
                left = node.get("left") or {}
                right = node.get("right")
                if left.get("type") == "MemberExpression":
                    name = self.member_name(left)
                elif left.get("type") == "Identifier":
                    name = left.get("name")
                else:
                    name = None
                if not name or not right:
                    continue
                if right.get("type") == "ObjectExpression":
                    self._collect_object(name, right, table)
                    continue
                value = self.resolve_value(right, table)
                if value is not None:
                    table.set(name, value)

    def _collect_object(self, prefix: str, node: Dict[str, Any], table: SymbolTable, depth: int = 0):
        if depth > self.MAX_RESOLVE_DEPTH:
            return
        for prop in node.get("properties") or []:
            if prop.get("type") != "Property" or prop.get("computed"):
                continue
            key = prop.get("key") or {}
            key_name = key.get("name") if key.get("type") == "Identifier" else key.get("value")
            if not isinstance(key_name, str):
                continue
            value_node = prop.get("value") or {}
            path = f"{prefix}.{key_name}"
            if value_node.get("type") == "ObjectExpression":
                self._collect_object(path, value_node, table, depth + 1)
                continue
            value = self.resolve_value(value_node, table)
            if value is not None:
                table.set(path, value)

    def _position(self, node: Dict[str, Any]) -> Tuple[int, int]:
        node_range = node.get("range") or [0, 0]
        loc = node.get("loc") or {}
        line = (loc.get("start") or {}).get("line", 0)
        return node_range[0], line

    def _callee_name(self, callee: Dict[str, Any]) -> str:
        if callee.get("type") == "Identifier":
            return callee.get("name") or ""
        if callee.get("type") == "MemberExpression" and not callee.get("computed"):
            return (callee.get("property") or {}).get("name") or ""
        return ""

    def _collect_candidates(self, tree: Dict[str, Any], table: SymbolTable) -> Iterator[SyntaxCandidate]:
        for node in self._walk(tree):
            kind = node.get("type")
            try:
                if kind == "Literal" and isinstance(node.get("value"), str):
                    offset, line = self._position(node)
                    yield SyntaxCandidate(node["value"], "ast_literal", offset, line)

                elif kind == "TemplateLiteral":
                    offset, line = self._position(node)
                    value = self.reconstruct_template(node, table)
                    if value:
                        yield SyntaxCandidate(value, "template_literal_resolved", offset, line)

                elif kind == "BinaryExpression" and node.get("operator") == "+":
                    value = self.resolve_value(node, table)
                    if value:
                        offset, line = self._position(node)
                        yield SyntaxCandidate(value, "string_concatenation", offset, line)

                elif kind == "AssignmentExpression":
                    value = self.resolve_value(node.get("right"), table)
                    if value:
                        offset, line = self._position(node)
                        yield SyntaxCandidate(value, "variable_assignment", offset, line)

                elif kind == "CallExpression":
                    yield from self._network_call(node, table)
            except RecursionError:
                raise
            except Exception as e:
                logger.debug(f"Skipping {kind} node: {str(e)[:80]}")

    def _network_call(self, node: Dict[str, Any], table: SymbolTable) -> Iterator[SyntaxCandidate]:
        name = self._callee_name(node.get("callee") or {})
        if name.lower() not in self.NETWORK_CALLS:
            return
        arguments = node.get("arguments") or []
        if not arguments:
            return
        first = arguments[0]
        offset, line = self._position(first)
        method = name.upper()

        resolved = self.resolve_value(first, table)
        if resolved:
            yield SyntaxCandidate(resolved, "network_call_resolved", offset, line, method, True)

        if first.get("type") == "Literal" and isinstance(first.get("value"), str):
            yield SyntaxCandidate(first["value"], "network_call", offset, line, method, True)
