import streamlit as st
import requests
import json
import os
from typing import List, Dict, Any

# Default API URL (change in sidebar if your backend is hosted elsewhere).
# Leave empty to process uploads in this process.
DEFAULT_API_URL = os.getenv("STREAMLIT_API_URL", "")

from invoice_recon.config import load_settings
from invoice_recon.pipeline import UploadedDocument, build_pipeline
from invoice_recon.validator import validate_payload

UPLOAD_TYPES = ["pdf", "xlsx", "xls", "csv", "txt", "png", "jpg", "jpeg", "webp"]


@st.cache_resource
def get_pipeline():
    """One pipeline (and service client) per Streamlit process."""
    return build_pipeline(load_settings())


def process_files_locally(files: List[st.runtime.uploaded_file_manager.UploadedFile], debug: bool) -> Dict[str, Any]:
    """Process files directly using imported modules (serverless mode)."""
    documents = [UploadedDocument(f.name, f.type or "", f.getvalue()) for f in files]
    return get_pipeline().extract_from_files(documents, debug=debug)


def send_files_to_api(files: List[st.runtime.uploaded_file_manager.UploadedFile], api_url: str, debug: bool,
                      timeout: int = 120) -> Dict[str, Any]:
    if not files:
        raise ValueError("No files to send")

    endpoint = api_url.rstrip("/") + "/api/extract"
    multipart = [("files", (f.name, f.getvalue(), f.type or "application/octet-stream")) for f in files]
    resp = requests.post(endpoint, files=multipart, params={"debug": str(debug).lower()}, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def _product_names(products: List[Dict[str, Any]]) -> Dict[str, str]:
    return {p["id"]: p.get("name", "") for p in products}


def _customer_names(customers: List[Dict[str, Any]]) -> Dict[str, str]:
    return {c["id"]: c.get("name", "") for c in customers}


def render_products(products: List[Dict[str, Any]]):
    if not products:
        st.info("No products extracted.")
        return
    rows = [{
        "ID": p["id"],
        "Name": p.get("name", ""),
        "Unit Price": p.get("unitPrice", 0),
        "Tax": f"{p.get('taxRate', 0) * 100:.0f}%",
        "Price With Tax": round(p.get("priceWithTax", 0), 2),
        "Quantity": p.get("quantity", "-"),
        "Discount": p.get("discount", "-"),
    } for p in products]
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_customers(customers: List[Dict[str, Any]]):
    if not customers:
        st.info("No customers extracted.")
        return
    rows = [{
        "ID": c["id"],
        "Name": c.get("name", ""),
        "Phone": c.get("phone") or "-",
        "Total Purchase": round(c.get("totalPurchase", 0), 2),
    } for c in customers]
    st.dataframe(rows, use_container_width=True, hide_index=True)


def render_invoices(payload: Dict[str, Any]):
    invoices = payload.get("invoices") or []
    if not invoices:
        st.info("No invoices extracted.")
        return
    products = _product_names(payload.get("products") or [])
    customers = _customer_names(payload.get("customers") or [])

    rows = [{
        "ID": inv["id"],
        "Serial": inv.get("serialNumber") or "-",
        "Customer": customers.get(inv.get("customerId"), "-"),
        "Date": inv.get("date") or "-",
        "Items": len(inv.get("items") or []),
        "Tax": round(inv.get("tax", 0), 2),
        "Total": round(inv.get("totalAmount", 0), 2),
    } for inv in invoices]
    st.dataframe(rows, use_container_width=True, hide_index=True)

    for inv in invoices:
        with st.expander(f"Items: {inv.get('serialNumber') or inv['id']}"):
            items = [{
                "Product": products.get(it["productId"], it["productId"]),
                "Qty": it.get("qty", 0),
                "Unit Price": it.get("unitPrice", 0),
                "Tax": f"{it.get('taxRate', 0) * 100:.0f}%",
            } for it in inv.get("items") or []]
            if items:
                st.table(items)
            else:
                st.write("No line items.")


def render_validation(payload: Dict[str, Any]):
    validation = validate_payload(payload)
    summary = validation["summary"]
    c1, c2, c3 = st.columns(3)
    c1.metric("Entities", summary["total_entities"])
    c2.metric("Complete", summary["valid_count"])
    c3.metric("Need attention", summary["invalid_count"])

    invalid = [r for r in validation["per_entity"] if not r["is_valid"]]
    if invalid:
        with st.expander("Fields to complete"):
            for r in invalid:
                st.write(f"- {r['entity']} {r['id']}: {', '.join(r['errors'])}")


def main():
    st.set_page_config(page_title="Invoice Reconciliation Console", layout="wide")
    st.title("Invoice Reconciliation Console")

    # Sidebar: Backend configuration
    st.sidebar.header("Configuration")
    api_url = st.sidebar.text_input("API URL (leave empty for standalone mode)", value=DEFAULT_API_URL)
    debug = st.sidebar.checkbox("Include debug trail", value=False)
    st.sidebar.markdown("---")
    st.sidebar.write("Usage:")
    st.sidebar.markdown("1. Upload invoices (PDF, spreadsheet, image)\n2. Click **Extract**\n3. Review the tabs")

    uploaded_files = st.file_uploader("Upload invoices", type=UPLOAD_TYPES, accept_multiple_files=True)
    if st.button("Extract"):
        if not uploaded_files:
            st.warning("Please upload one or more files before clicking Extract.")
        else:
            try:
                with st.spinner("Extracting..."):
                    if api_url:
                        st.session_state["payload"] = send_files_to_api(uploaded_files, api_url, debug)
                    else:
                        st.session_state["payload"] = process_files_locally(uploaded_files, debug)
            except Exception as e:
                st.error(f"Error: {str(e)}")

    payload = st.session_state.get("payload")
    if payload:
        if payload.get("message"):
            st.warning(payload["message"])

        render_validation(payload)

        tab1, tab2, tab3 = st.tabs(["Invoices", "Products", "Customers"])
        with tab1:
            render_invoices(payload)
        with tab2:
            render_products(payload.get("products") or [])
        with tab3:
            render_customers(payload.get("customers") or [])

        if payload.get("_debug"):
            with st.expander("Debug trail"):
                st.json(payload["_debug"])

        st.download_button(
            label="Download JSON",
            data=json.dumps(payload, indent=2),
            file_name="invoice_payload.json",
            mime="application/json"
        )

    st.markdown("---")
    st.markdown("If you encounter issues, enable the debug trail and check the request logs.")


if __name__ == "__main__":
    main()
