# [TEMPLATE: CUI // SP-CTI]
"""proprion — least-privilege object-storage credentials per application.

Provisions an access key for a named app against Scaleway or Exoscale IAM,
restricted to one bucket prefix.
"""

__version__ = "0.1.0"
