import csv
import io

META = ["Serie", "Probenkennung", "Datum", "Wdh", "Matrix", "Bearbeiter", "Status"]

# file order, deliberately unsorted
HEADERS_IN_FILE = [
    "Quotient Kationen Anionen NFV",
    "LFLFLFM3.1",
    "ICCa2.1",
    "ICPFe1.1",
    "TOCNPOC1.1",
    "Corg berechnet",
    "LFLFLFM1.3",
    "Theo elekt Leit (EU) korr",
    "Alkalinität-Gran KS4.3",
    "PPO4IC1.1",
    "PPgesICP1.1",
    "ICCa3.1",
    "Quotient ELF_eu_korr",
    "TITpH1.1",
]

SORTED_HEADERS = [
    "Alkalinität-Gran KS4.3",
    "Corg berechnet",
    "ICCa2.1",
    "ICCa3.1",
    "ICPFe1.1",
    "LFLFLFM1.3",
    "LFLFLFM3.1",
    "PPgesICP1.1",
    "PPO4IC1.1",
    "Quotient ELF_eu_korr",
    "Quotient Kationen Anionen NFV",
    "Theo elekt Leit (EU) korr",
    "TITpH1.1",
    "TOCNPOC1.1",
]

# row-2: complete, plausible
ROW_P10 = {
    "Quotient Kationen Anionen NFV": "1,02",
    "LFLFLFM3.1": "250",
    "ICCa2.1": "48,1",
    "ICPFe1.1": "0,05",
    "TOCNPOC1.1": "2,4",
    "Corg berechnet": "3",
    "LFLFLFM1.3": "251",
    "Theo elekt Leit (EU) korr": "245",
    "Alkalinität-Gran KS4.3": "2,31",
    "PPO4IC1.1": "0,02",
    "PPgesICP1.1": "0,03",
    "ICCa3.1": "48,3",
    "Quotient ELF_eu_korr": "1,03",
    "TITpH1.1": "7,4",
}

# row-3: ion balance off, conductivity only from the fallback column, no TOC
ROW_P2 = {
    "Quotient Kationen Anionen NFV": "1,25",
    "LFLFLFM3.1": "",
    "ICCa2.1": "12,5",
    "ICPFe1.1": "0,3",
    "Corg berechnet": "15",
    "LFLFLFM1.3": "45",
    "Theo elekt Leit (EU) korr": "44",
    "PPO4IC1.1": "0,1",
    "PPgesICP1.1": "0,2",
    "TITpH1.1": "7,1",
}

# row-4: repeat measurement of P2
ROW_P2_REPEAT = {
    "Quotient Kationen Anionen NFV": "1,30",
    "LFLFLFM3.1": "44",
    "Theo elekt Leit (EU) korr": "44",
    "Corg berechnet": "15",
    "ICCa2.1": "12,9",
}


def make_csv(rows) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerows(rows)
    return buf.getvalue()


def lab_row(series: str, sample: str, repeat: str, values: dict) -> list:
    return [series, sample, "01.01.2025", repeat, "GW", "AB", "fertig"] + [values.get(h, "") for h in HEADERS_IN_FILE]


def sample_csv_text() -> str:
    """Three data rows, a blank line (not counted) and a malformed trailing row."""
    head = make_csv([
        ["Laborexport Wasser", "Serie 12"],
        META + HEADERS_IN_FILE,
        lab_row("S2", "P10", "1", ROW_P10),
        lab_row("S1", "P2", "1", ROW_P2),
    ])
    tail = make_csv([
        lab_row("S1", "P2", "2", ROW_P2_REPEAT),
        ["kaputt"],
    ])
    return head + "\n" + tail
