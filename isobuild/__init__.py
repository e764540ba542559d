"""isobuild - LiveCD ISO image builder.

This package assembles bootable ISO images from cached base layers,
optional git-provisioned content and the isolinux bootloader.
"""

__version__ = "2.210422"
__all__ = ["__version__"]
