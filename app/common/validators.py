"""
Validadores específicos para Honduras
"""
import re


RTN_GROUPS = (4, 4, 6)


def validate_honduras_rtn(rtn: str) -> bool:
    """
    Valida RTN hondureño (Registro Tributario Nacional).
    Formatos válidos:
    - 0801-1999-123456 (tres grupos numéricos de 4, 4 y 6 dígitos)
    - 08011999123456 (14 dígitos sin guiones)
    """
    if not rtn:
        return False

    # Limpiar espacios
    cleaned = re.sub(r'\s', '', rtn)

    patterns = [
        r'^\d{4}-\d{4}-\d{6}$',
        r'^\d{14}$',
    ]

    return any(re.match(pattern, cleaned) for pattern in patterns)


def format_honduras_rtn(rtn: str) -> str:
    """
    Formatea RTN hondureño al formato estándar XXXX-XXXX-XXXXXX
    """
    if not validate_honduras_rtn(rtn):
        return rtn  # Retorna sin cambios si no es válido

    digits = re.sub(r'\D', '', rtn)
    first, second, _ = RTN_GROUPS
    return f"{digits[:first]}-{digits[first:first + second]}-{digits[first + second:]}"
