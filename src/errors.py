#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN ERRORS ###################################

class ConfigurationError(ValueError):
    """Invalid command line option or group token, fatal at startup."""

class CapacityError(ConfigurationError):
    """The session table cannot hold the requested groups."""

class AddressError(ConfigurationError):
    """A source or group address could not be resolved."""

class ResourceError(OSError):
    """Reading or raising an OS resource limit failed."""

class TransportError(OSError):
    """Unrecoverable failure while sending or receiving."""

############################## END ERRORS #####################################
