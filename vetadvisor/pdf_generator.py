from fpdf import FPDF

from .config import get_clinic_config


class BasePDF(FPDF):
    def __init__(self, conf=None):
        super().__init__()
        self.conf = conf or get_clinic_config()
        self.set_auto_page_break(auto=True, margin=15)

    def header(self):
        self.set_fill_color(245, 245, 245)
        self.rect(0, 0, 210, 40, 'F')
        self.set_font('Helvetica', 'B', 18)
        self.set_text_color(0, 51, 102)
        self.cell(0, 10, _latin1(self.conf.get('platform_title', '')).upper(), 0, 1, 'C')
        self.set_font('Helvetica', '', 10)
        self.set_text_color(100, 100, 100)
        contact = f"{self.conf.get('address')} | Tel: {self.conf.get('phone')}"
        self.cell(0, 5, _latin1(contact), 0, 1, 'C')
        self.ln(20)

    def footer(self):
        self.set_y(-15)
        self.set_font('Helvetica', 'I', 8)
        self.set_text_color(128)
        self.cell(0, 10, f'Page {self.page_no()}', 0, 0, 'C')


def _latin1(text) -> str:
    # core fonts only cover latin-1
    return str(text).encode("latin-1", "replace").decode("latin-1")


def generate_diagnosis_report(entry_id, user_name, date, disease_name, cf, description, remedy, conf=None):
    pdf = BasePDF(conf)
    pdf.add_page()

    pdf.set_draw_color(200)
    pdf.line(10, pdf.get_y(), 200, pdf.get_y())
    pdf.ln(5)

    pdf.set_font('Helvetica', 'B', 11)
    pdf.set_text_color(0)
    pdf.cell(95, 8, _latin1(f"OWNER: {user_name}"), 0, 0)
    pdf.set_text_color(150, 0, 0)
    pdf.cell(95, 8, f"CONSULTATION #: {entry_id}", 0, 1, 'R')

    pdf.set_text_color(0)
    pdf.cell(95, 8, f"CONFIDENCE: {cf * 100:.2f}%", 0, 0)
    pdf.cell(95, 8, f"DATE: {date}", 0, 1, 'R')

    pdf.ln(5)
    pdf.line(10, pdf.get_y(), 200, pdf.get_y())
    pdf.ln(10)

    sections = [("DIAGNOSIS", disease_name), ("DESCRIPTION", description), ("RECOMMENDED REMEDY", remedy)]
    for title, content in sections:
        pdf.set_fill_color(240, 248, 255)
        pdf.set_font('Helvetica', 'B', 10)
        pdf.cell(0, 7, f"  {title}", 0, 1, 'L', 1)
        pdf.set_font('Helvetica', '', 10)
        val = str(content) if content else "N/A"
        pdf.multi_cell(0, 6, _latin1(f"  {val}"))
        pdf.ln(3)

    return bytes(pdf.output())
