"""kiew - tabletop game assistant that talks to an LLM and a set of tools."""

__version__ = "0.4.0"
