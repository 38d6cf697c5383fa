"""
ApiScan -- Suspicious API Import Scanner
=========================================

Static triage of Windows PE executables: the sample's imported function
names are matched against the behaviour categories published by
malapi.io (Injection, Anti-Debugging, Ransomware, ...), which are cached
locally after the first synchronization.

Capabilities:
    - Struct-based PE32 / PE32+ import table extraction
    - Bounded-concurrency synchronization of the malapi.io catalogue
    - MessagePack on-disk cache with atomic writes
    - Per-category matching with summary, library and documentation details
    - Rich table, JSON, YAML, TOML and CSV output

References:
    - MalAPI.io. https://malapi.io/
    - Microsoft. (2024). PE Format.
"""

__version__ = "1.0.0"
