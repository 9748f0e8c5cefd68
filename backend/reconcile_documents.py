#!/usr/bin/env python3
"""
Reconciliación de documentos.
Recalcula el indicador is_fully_signed de cada documento a partir de sus firmas
y corrige los que estén desfasados.

Uso:
  python reconcile_documents.py [--dry-run] [--verbose]
"""

import argparse
import logging
import os
import sys

# Agregar el directorio backend al path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from visafirma.core.exceptions import VisaFirmaError
from visafirma.db import session as db
from visafirma.services.document import DocumentService
from visafirma.services.storage import get_storage


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Reconciliar el estado de firma de los documentos')
    parser.add_argument('--dry-run', action='store_true', help='Solo mostrar los documentos desfasados sin corregirlos')
    parser.add_argument('--verbose', '-v', action='store_true', help='Logs detallados')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO)

    print("-" * 60)
    print(f"Modo: {'Dry-run (prueba)' if args.dry_run else 'Ejecución real'}")
    print("-" * 60)

    try:
        with db.session_scope() as session:
            service = DocumentService(session, storage=get_storage())
            corrected = service.reconcile_completion(dry_run=args.dry_run)
    except VisaFirmaError as exc:
        print(f"ERROR durante la reconciliación: {exc.message}")
        return 1

    label = 'por corregir' if args.dry_run else 'corregidos'
    print(f"Documentos {label}: {len(corrected)}")
    for document_id in corrected[:10]:
        print(f"  - {document_id}")
    if len(corrected) > 10:
        print(f"  ... y {len(corrected) - 10} documentos más")
    return 0


if __name__ == "__main__":
    sys.exit(main())
