"""Build manifests describing which logical paths share stored content.

This package contains:
- store: ManifestStore with BlobRecord, LinkRecord and ManifestInfo
"""
