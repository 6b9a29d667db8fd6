# src/kpdev/plugin/__init__.py
"""
Plugin assembly, manifest handling, signing and the build pipeline.
"""

from kpdev.plugin.assembler import AssemblyError, BuildMode, assemble_plugin
from kpdev.plugin.builder import BuildError, BuildResult, build
from kpdev.plugin.bundler import BundlerError
from kpdev.plugin.manifest import (
    ManifestValidationError,
    dump_manifest,
    order_manifest,
    validate_manifest,
)
from kpdev.plugin.packager import (
    ArchiveIOError,
    PackageVerificationError,
    SigningError,
    create_plugin_package,
    verify_package,
)

__all__ = [
    "AssemblyError",
    "BuildMode",
    "assemble_plugin",
    "BuildError",
    "BuildResult",
    "build",
    "BundlerError",
    "ManifestValidationError",
    "dump_manifest",
    "order_manifest",
    "validate_manifest",
    "ArchiveIOError",
    "PackageVerificationError",
    "SigningError",
    "create_plugin_package",
    "verify_package",
]
