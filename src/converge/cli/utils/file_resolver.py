"""File path resolution for CLI arguments."""

from pathlib import Path


def resolve_file_path(file_path: str) -> Path:
    """
    Resolve a user-supplied declaration or plan file path.

    Relative paths are taken from the current directory.

    Args:
        file_path: User-provided file path

    Returns:
        Resolved absolute Path

    Raises:
        FileNotFoundError: If the path is missing or is not a regular file
    """
    path = Path(file_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    path = path.resolve()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}. Please check the file path and try again.")
    if not path.is_file():
        raise FileNotFoundError(f"Path is not a file: {file_path}. Please provide a valid file path.")
    return path
