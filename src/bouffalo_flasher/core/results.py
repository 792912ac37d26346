"""
Result objects for core operations.

Workflows report through an OperationResult rather than raising, so the
CLI renders every outcome the same way and maps it to an exit code.
"""

from dataclasses import asdict, dataclass, field
from typing import List, Dict, Any, Optional


@dataclass
class OperationResult:
    """
    Outcome of one workflow run against the device or a file.

    Attributes:
        ok: False once any error has been recorded
        operation: Workflow name ("write_flash", "boot_info", ...)
        region: Flash range touched, see format_region()
        bytes_len: Bytes read, written or erased
        hashes: Hex digests keyed by origin (host_sha256, device_sha256)
        warnings: Problems that did not fail the run
        errors: Problems that did
        metadata: Workflow-specific values; bytes values stay out of to_dict()
        logs: Log lines captured while the workflow ran
    """
    ok: bool
    operation: str
    region: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.ok = False

    def compare_digests(self, host: bytes, device: Optional[bytes], mismatch: str) -> bool:
        """
        Record host/device SHA-256 digests and fail the result if they differ.

        A missing device digest (verification skipped) only warns.
        """
        self.hashes["host_sha256"] = host.hex()
        if device is None:
            self.add_warning("Verification skipped")
            return False
        self.hashes["device_sha256"] = device.hex()
        if device != host:
            self.add_error(mismatch)
            return False
        return True

    def to_summary(self) -> str:
        """Short multi-line report for the terminal."""
        head = f"{self.operation}: {'OK' if self.ok else 'FAILED'}"
        if self.region:
            head += f" [{self.region}]"
        if self.bytes_len:
            head += f" {self.bytes_len:,} bytes"

        lines = [head]
        lines.extend(f"  {name} = {digest}" for name, digest in self.hashes.items())
        lines.extend(f"  warning: {message}" for message in self.warnings)
        lines.extend(f"  error: {message}" for message in self.errors)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe view of the result."""
        out = asdict(self)
        out["metadata"] = {
            key: value for key, value in self.metadata.items()
            if not isinstance(value, (bytes, bytearray))
        }
        return out

    @classmethod
    def success(cls, operation: str, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, **kwargs) -> "OperationResult":
        return cls(ok=False, operation=operation, errors=[error], **kwargs)


def format_region(addr: int, length: int) -> str:
    """Describe [addr, addr + length) as "0xSTART-0xEND"."""
    return f"0x{addr:06X}-0x{addr + length:06X}"
