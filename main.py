#!/usr/bin/env python3
"""
Fiscal Credit Engine - Entry Point

Parses Brazilian fiscal filings (SPED EFD-Contribuicoes, PGDAS-D reports,
NF-e batches), identifies recoverable tax credits, and compares the
annual tax burden across regimes.

Usage:
    python main.py parse --file efd_contribuicoes.txt
    python main.py credits notas.json pgdas_2024_03.txt --regime simples --annex I
    python main.py credits efd.txt --regime lucro_real --export-json credits.json
    python main.py regimes --revenue 2000000 --payroll 600000 --cnae 6201-5/01
    python main.py rules
"""

from fiscal_engine.cli import main

if __name__ == "__main__":
    main()
