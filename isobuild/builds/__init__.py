"""Build orchestration module.

This module handles:
- Content hashing and image identities
- Running external tools (tar, git, chroot, mkisofs)
- The base layer archive cache
- The per-build pipeline and the run loop
- Status reporting
"""

# Access submodules via isobuild.builds.pipeline, etc.
