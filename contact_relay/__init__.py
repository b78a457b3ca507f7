def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("contact-relay")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _get_version()
