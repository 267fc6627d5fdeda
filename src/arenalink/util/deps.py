from __future__ import annotations


def check_dependencies(server: bool = False) -> tuple[bool, list[str]]:
    required = [
        ("cryptography", "cryptography"),
        ("structlog", "structlog"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
    ]
    if server:
        required += [("fastapi", "fastapi"), ("uvicorn", "uvicorn[standard]")]
    missing = []
    for mod, pipname in required:
        try:
            __import__(mod)
        except ImportError:
            missing.append(pipname)
    return (len(missing) == 0, missing)
