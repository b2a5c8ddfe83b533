"""Spend & revenue aggregation backend.

Having this file ensures the package is recognized as a standard Python
package during test discovery.
"""

__all__: list[str] = []
