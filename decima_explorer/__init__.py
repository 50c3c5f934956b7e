"""Read, extract, pack, repack and swap entries of Decima engine .bin and .mpk archives."""

__version__ = "2.7.0"