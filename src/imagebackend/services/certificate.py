"""Inspect the builder's TLS server certificate."""

from __future__ import annotations

from cryptography import x509

__all__ = ["certificate_matches", "subject_alt_names"]


def subject_alt_names(pem: bytes) -> list[str]:
    """Extract the subject alternative names of a certificate.

    Names are rendered the way OpenSSL prints them, as ``IP Address:<ip>``
    for addresses and ``DNS:<name>`` for host names. Other kinds of names
    are ignored.

    Parameters
    ----------
    pem
        PEM-encoded certificate.

    Returns
    -------
    list of str
        Formatted subject alternative names, empty if the certificate has no
        such extension.

    Raises
    ------
    ValueError
        Raised if the certificate cannot be parsed.
    """
    cert = x509.load_pem_x509_certificate(pem)
    try:
        ext = cert.extensions.get_extension_for_class(
            x509.SubjectAlternativeName
        )
    except x509.ExtensionNotFound:
        return []
    san = ext.value
    addresses = san.get_values_for_type(x509.IPAddress)
    names = [f"IP Address:{a}" for a in addresses]
    names.extend(f"DNS:{n}" for n in san.get_values_for_type(x509.DNSName))
    return names


def certificate_matches(names: list[str], endpoint: str) -> bool:
    """Whether a list of subject alternative names covers an endpoint."""
    return f"IP Address:{endpoint}" in names or f"DNS:{endpoint}" in names
