from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import logging
import posixpath
import re
import threading

import solcx
from solcx.exceptions import SolcError

from api.services.import_resolver import ImportCache, ImportResolver

logger = logging.getLogger(__name__)

SOURCE_NAME = "Contract"
DEFAULT_SOLC_VERSION = "0.8.24"
DEFAULT_OPTIMIZER_RUNS = 200

# Matches string literals (group 1) or comments (group 2)
_STRINGS_OR_COMMENTS = re.compile(
    r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')|(//[^\n]*|/\*.*?\*/)",
    re.DOTALL,
)
_IMPORT_STATEMENT = re.compile(
    r"\bimport\s+(?:[^;'\"]*?\bfrom\s+)?[\"']([^\"']+)[\"'][^;]*;"
)

_install_lock = threading.Lock()


class CompilationError(Exception):
    """Raised when solc reports at least one error-severity diagnostic."""

    def __init__(self, detail: str, errors: Optional[list[dict]] = None, warnings: Optional[list[dict]] = None):
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []
        self.warnings = warnings or []

    def __str__(self):
        return str(self.detail)


@dataclass
class CompiledContract:
    abi: list
    bytecode: str
    contract_name: str
    compiler_version: str
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "abi": self.abi,
            "bytecode": self.bytecode,
            "contractName": self.contract_name,
            "compilerVersion": self.compiler_version,
            "warnings": self.warnings,
        }


def _diagnostic(error: dict) -> dict:
    return {
        "severity": error.get("severity", "error"),
        "type": error.get("type"),
        "message": error.get("message") or error.get("formattedMessage") or "",
        "formattedMessage": error.get("formattedMessage") or error.get("message") or "",
        "sourceLocation": error.get("sourceLocation"),
    }


def strip_comments(source: str) -> str:
    return _STRINGS_OR_COMMENTS.sub(lambda m: m.group(1) or " ", source)


def find_imports(source: str) -> list[str]:
    return _IMPORT_STATEMENT.findall(strip_comments(source))


def unit_name_for(import_path: str, importer: str) -> str:
    """Source unit name solc assigns to import_path when imported from importer."""
    if import_path.startswith(("./", "../")):
        return posixpath.normpath(posixpath.join(posixpath.dirname(importer), import_path))
    return import_path


class CompilerService:
    def __init__(
        self,
        solc_version: str = DEFAULT_SOLC_VERSION,
        optimizer_runs: int = DEFAULT_OPTIMIZER_RUNS,
        resolver_factory: Optional[Callable[[ImportCache], ImportResolver]] = None,
    ):
        self.solc_version = solc_version
        self.optimizer_runs = optimizer_runs
        self.resolver_factory = resolver_factory or (lambda cache: ImportResolver(cache=cache))
        self._full_version: Optional[str] = None

    def ensure_compiler(self) -> str:
        """Install the pinned solc if needed and return its full version string."""
        if self._full_version:
            return self._full_version
        with _install_lock:
            installed = {str(v) for v in solcx.get_installed_solc_versions()}
            if self.solc_version not in installed:
                logger.info(f"Solc version {self.solc_version} not found. Installing...")
                solcx.install_solc(self.solc_version)
            solcx.set_solc_version(self.solc_version, silent=True)
            full = solcx.get_solc_version(with_commit_hash=True)
        self._full_version = f"v{full}"
        return self._full_version

    def collect_sources(self, source_code: str, cache: ImportCache) -> tuple[dict, list[dict]]:
        """Walk the import graph from the main unit and gather every reachable source."""
        resolver = self.resolver_factory(cache)
        sources = {SOURCE_NAME: {"content": source_code}}
        missing: list[dict] = []
        pending = [(SOURCE_NAME, source_code)]

        while pending:
            importer, content = pending.pop()
            for import_path in find_imports(content):
                unit = unit_name_for(import_path, importer)
                if unit in sources:
                    continue
                lookup = import_path if importer == SOURCE_NAME else unit
                result = resolver.resolve(lookup)
                if not result.found:
                    message = result.error
                    missing.append(
                        {
                            "severity": "error",
                            "type": "ImportError",
                            "message": message,
                            "formattedMessage": f"ImportError: {message} (imported from {importer})",
                            "sourceLocation": None,
                        }
                    )
                    sources[unit] = None
                    continue
                sources[unit] = {"content": result.contents}
                pending.append((unit, result.contents))

        return {k: v for k, v in sources.items() if v is not None}, missing

    def build_input(self, sources: dict) -> dict:
        return {
            "language": "Solidity",
            "sources": sources,
            "settings": {
                "optimizer": {"enabled": True, "runs": self.optimizer_runs},
                "outputSelection": {
                    "*": {"*": ["abi", "evm.bytecode", "evm.deployedBytecode"]}
                },
            },
        }

    def _run_solc(self, input_json: dict) -> dict:
        try:
            return solcx.compile_standard(input_json, solc_version=self.solc_version)
        except SolcError as e:
            # compile_standard raises on error-severity output; keep the diagnostics
            errors = getattr(e, "error_dict", None) or [
                {"severity": "error", "message": str(e), "formattedMessage": str(e)}
            ]
            return {"errors": errors}

    def compile(
        self,
        source_code: str,
        contract_name: Optional[str] = None,
        cache: Optional[ImportCache] = None,
    ) -> CompiledContract:
        if not source_code or not source_code.strip():
            raise ValueError("sourceCode is required for compilation")

        compiler_version = self.ensure_compiler()
        sources, import_errors = self.collect_sources(source_code, cache if cache is not None else ImportCache())

        logger.info(f"Compiling {len(sources)} source unit(s) with solc {compiler_version}")
        output = self._run_solc(self.build_input(sources))

        diagnostics = [_diagnostic(e) for e in output.get("errors", [])]
        # solc names a missing source by its unit name, not the import string
        missing_units = {
            unit_name_for(e["message"].replace("File not found: ", ""), SOURCE_NAME) for e in import_errors
        }
        diagnostics = [
            d for d in diagnostics
            if not any(f'"{unit}" not found' in d["message"] for unit in missing_units)
        ]
        errors = import_errors + [d for d in diagnostics if d["severity"] == "error"]
        warnings = [d for d in diagnostics if d["severity"] == "warning"]

        if errors:
            message = "\n".join(e["formattedMessage"] for e in errors)
            raise CompilationError(f"Solidity compilation failed:\n{message}", errors=errors, warnings=warnings)

        contracts = (output.get("contracts") or {}).get(SOURCE_NAME) or {}
        if not contracts:
            raise CompilationError("No contracts were produced by the compiler", warnings=warnings)

        name, data = self._select_contract(contracts, contract_name, warnings)
        bytecode = ((data.get("evm") or {}).get("bytecode") or {}).get("object")
        if not bytecode:
            raise CompilationError(
                f"Compiled contract {name} is missing bytecode (abstract contract or interface?)",
                warnings=warnings,
            )

        return CompiledContract(
            abi=data.get("abi", []),
            bytecode="0x" + bytecode,
            contract_name=name,
            compiler_version=compiler_version,
            warnings=warnings,
        )

    def _select_contract(
        self, contracts: dict[str, Any], contract_name: Optional[str], warnings: list[dict]
    ) -> tuple[str, dict]:
        if contract_name:
            if contract_name not in contracts:
                raise CompilationError(
                    f"Contract {contract_name} not found. Available: {', '.join(sorted(contracts))}",
                    warnings=warnings,
                )
            return contract_name, contracts[contract_name]

        if len(contracts) == 1:
            return next(iter(contracts.items()))

        deployable = {
            name: data
            for name, data in contracts.items()
            if ((data.get("evm") or {}).get("bytecode") or {}).get("object")
        }
        if len(deployable) == 1:
            return next(iter(deployable.items()))
        if not deployable:
            name = next(iter(contracts))
            return name, contracts[name]
        raise CompilationError(
            "Source declares multiple deployable contracts "
            f"({', '.join(sorted(deployable))}); specify contractName",
            warnings=warnings,
        )
