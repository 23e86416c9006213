"""Path lookups into nested JSON returned by ``az`` and ``terraform``.

Azure CLI output is deeply nested (``properties.outputs.<name>.value``);
``lookup`` resolves dotted paths with optional list indices so callers do
not chain ``.get()`` calls by hand.
"""

from typing import Any, Dict, List

from infra.exceptions import BeeuxError


def _tokenize(path: str) -> List[str]:
    tokens = []
    idx = 0
    while idx < len(path):
        char = path[idx]
        if char == "[":
            end_idx = path.find("]", idx)
            if end_idx == -1:
                raise BeeuxError(
                    "Invalid access path: missing closing bracket",
                    context={"path": path},
                )
            tokens.append(path[idx : end_idx + 1])
            idx = end_idx + 1
        elif char == ".":
            idx += 1
        else:
            start_idx = idx
            while idx < len(path) and path[idx] not in ".[]":
                idx += 1
            tokens.append(path[start_idx:idx])
    return tokens


def lookup(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path such as ``properties.outputs.vmPublicIP.value``.

    Keys are matched exactly first, then case-insensitively. Missing keys,
    out-of-range indices and type mismatches return ``default``.

    Args:
        data: Parsed JSON (dicts and lists)
        path: Dotted path with optional ``[n]`` list indices
        default: Value returned when the path cannot be resolved

    Raises:
        BeeuxError: If the path syntax is invalid (unclosed bracket or
            non-numeric list index)
    """
    if not path:
        return default
    current: Any = data
    for token in _tokenize(path):
        if token.startswith("[") and token.endswith("]"):
            index_str = token[1:-1]
            if not index_str.isdigit():
                raise BeeuxError(
                    "List index must be numeric",
                    context={"path": path, "token": token},
                )
            index = int(index_str)
            if not isinstance(current, list) or index >= len(current):
                return default
            current = current[index]
        else:
            if not isinstance(current, dict):
                return default
            if token in current:
                current = current[token]
            else:
                lowered = {key.lower(): key for key in current.keys()}
                match = lowered.get(token.lower())
                if match is None:
                    return default
                current = current[match]
    return default if current is None else current


def deployment_outputs(deployment: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten ARM deployment outputs ``{name: {type, value}}`` to ``{name: value}``."""
    outputs = lookup(deployment, "properties.outputs", {}) or {}
    return {
        name: (entry.get("value") if isinstance(entry, dict) else entry)
        for name, entry in outputs.items()
    }
