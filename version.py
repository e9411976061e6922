"""
UniFi Insights Version Management
Semantic Versioning: MAJOR.MINOR.PATCH
"""

VERSION_MAJOR = 1
VERSION_MINOR = 2
VERSION_PATCH = 0

# Pre-release identifier (optional, e.g., 'alpha', 'beta', 'rc1')
VERSION_PRERELEASE = None


def get_version():
    """
    Get the full version string
    Returns: str - Full version string (e.g., "1.2.0" or "1.2.0-beta")
    """
    version = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"

    if VERSION_PRERELEASE:
        version += f"-{VERSION_PRERELEASE}"

    return version


if __name__ == '__main__':
    print(f"UniFi Insights Version: {get_version()}")
