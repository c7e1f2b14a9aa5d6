"""
dstools - Active Directory Discovery and Management
===================================================

Locates domain controllers, resolves forest/domain/trust/site topology,
searches and creates directory objects and edits their access control.

Architecture Overview:
----------------------
- model/: Typed data models and request types
- directory/: Transport (ldap3 + dnspython), paths, security descriptors
- core/: Context resolution, DC locator, resolvers, topology, objects, ACLs
- session.py: DirectoryTools facade wiring everything together
- main.py: Command-line interface

Design Decisions:
-----------------
1. All network access sits behind the DirectoryService interface
2. All data models use Python dataclasses for type safety and clarity
3. Every failure surfaces as one DirectoryError with a kind and the step
   that failed
4. Nothing is cached between calls
"""

__version__ = "1.0.0"

from .config import DSConfig
from .errors import DirectoryError, ErrorKind
from .session import DirectoryTools
