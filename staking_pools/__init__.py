from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("near-staking-pools")
except PackageNotFoundError:
    raise ValueError("near-staking-pools package not found")
