"""Find remote branches that are rotting.

Features:
- Classify remote branches against a production branch
- List harvestable branches (already merged) with delete commands
- Rank pending branches by staleness or by commit count
- Report branches whose divergence could not be determined
"""

__version__ = "0.3.0"
