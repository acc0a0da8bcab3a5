# [TEMPLATE: CUI // SP-CTI]
"""Provider abstraction layer.

  - Request signing (static key header, EXO2-HMAC-SHA256)
  - IAM providers (Scaleway applications, Exoscale roles)
  - Scoped policy builders and bucket-policy merge
  - S3-compatible object storage (bucket bootstrap, bucket policy)
"""
