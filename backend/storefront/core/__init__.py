"""
Core package for shared configuration, logging and caller identity.
"""
