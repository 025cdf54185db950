"""dnslogd plugin namespace package.

Brief:
    Groups built-in dnslogd plugins under the ``dnslogd.plugins`` namespace.

Inputs:
    - None.

Outputs:
    - Makes subpackages such as ``dnslogd.plugins.eventstore`` importable.
"""
